import pytest

from poweredup.lwp3.bytecodes import (
    BluetoothAddress,
    DataFormat,
    IODeviceKind,
    LWPVersion,
    PortID,
    Version,
)


class TestVersion:
    def test_fields(self):
        version = Version(0x17012345)
        assert version.major == 1
        assert version.minor == 7
        assert version.bug == 1
        assert version.build == 2345

    def test_str(self):
        assert str(Version(0x10000004)) == "1.0.00.0004"

    def test_repr(self):
        assert repr(Version(0x10000004)) == "Version(0x10000004)"

    def test_parse(self):
        assert Version.parse("1.7.01.2345") == 0x17012345


class TestLWPVersion:
    def test_str(self):
        assert str(LWPVersion(0x0300)) == "03.00"

    def test_fields(self):
        version = LWPVersion.parse("03.10")
        assert version.major == 3
        assert version.minor == 10


class TestBluetoothAddress:
    def test_from_str(self):
        addr = BluetoothAddress("90:84:2b:60:3c:b8")
        assert addr == b"\x90\x84\x2b\x60\x3c\xb8"
        assert str(addr) == "90:84:2B:60:3C:B8"

    def test_bad_length(self):
        with pytest.raises(TypeError):
            BluetoothAddress(b"\x00\x01")


class TestPortID:
    def test_lettered(self):
        assert PortID(0) is PortID.A
        assert PortID(3) is PortID.D

    def test_unnamed(self):
        port = PortID(50)
        assert port == 50
        assert port.internal
        assert PortID(50) is port

    def test_external(self):
        assert not PortID(16).internal

    def test_reserved(self):
        with pytest.raises(ValueError):
            PortID(101)


class TestIODeviceKind:
    def test_known(self):
        assert IODeviceKind(0x2E) is IODeviceKind.TECHNIC_LARGE_MOTOR

    def test_unknown(self):
        kind = IODeviceKind(0x1234)
        assert kind == 0x1234
        assert kind.name == "4660"

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            IODeviceKind(0x10000)


class TestDataFormat:
    @pytest.mark.parametrize(
        "fmt,size,code",
        [
            (DataFormat.DATA8, 1, "b"),
            (DataFormat.DATA16, 2, "h"),
            (DataFormat.DATA32, 4, "i"),
            (DataFormat.DATAF, 4, "f"),
        ],
    )
    def test_struct(self, fmt: DataFormat, size: int, code: str):
        assert fmt.size == size
        assert fmt.struct_code == code
