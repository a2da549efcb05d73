# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors
