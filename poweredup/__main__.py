# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""Main entry point for running poweredup as a module."""

from poweredup.cli import main

if __name__ == "__main__":
    main()
