"""Tests for microvm specification models."""

import pytest
from pydantic import ValidationError

from microvm.models.spec import (
    ContainerFileSource,
    IfaceType,
    Microvm,
    MicrovmSpec,
    NetworkInterface,
    Volume,
)


@pytest.fixture
def spec_record():
    """A declarative record using API field names."""
    return {
        "vcpu": 2,
        "memoryMb": 2048,
        "rootVolume": {"id": "root", "image": "img:v1"},
        "volumes": [{"id": "data", "image": "data:v1", "readOnly": True, "mountPoint": "/data"}],
        "kernel": {"image": "kernel:5.10", "filename": "vmlinux"},
        "initrd": {"image": "initrd:v1"},
        "networkInterfaces": [
            {"guestDeviceName": "eth0", "type": "tap"},
            {"guestDeviceName": "eth1", "type": "macvtap", "guestMac": "aa:bb:cc:dd:ee:ff", "address": "10.0.0.2/24"},
        ],
    }


class TestMicrovmSpec:
    """Test MicrovmSpec model."""

    def test_from_api_record(self, spec_record):
        """Test building a spec from API field names."""
        spec = MicrovmSpec.model_validate(spec_record)

        assert spec.vcpu == 2
        assert spec.memory_mb == 2048
        assert spec.root_volume == Volume(id="root", image="img:v1")
        assert spec.additional_volumes[0].read_only is True
        assert spec.additional_volumes[0].mount_point == "/data"
        assert spec.kernel == ContainerFileSource(image="kernel:5.10", filename="vmlinux")
        assert spec.initrd.filename == ""
        assert spec.network_interfaces[0].type is IfaceType.TAP
        assert spec.network_interfaces[1].type is IfaceType.MACVTAP
        assert spec.network_interfaces[1].guest_mac == "aa:bb:cc:dd:ee:ff"

    def test_unset_fields_are_empty(self, spec_record):
        """Test that defaultable fields stay unset until defaulting runs."""
        spec = MicrovmSpec.model_validate(spec_record)

        assert spec.kernel_cmdline == ""
        assert spec.root_volume.mount_point == ""
        assert spec.root_volume.read_only is False
        assert spec.network_interfaces[0].guest_mac == ""
        assert spec.network_interfaces[0].address == ""

    def test_populate_by_python_name(self):
        """Test constructing a spec with Python field names."""
        spec = MicrovmSpec(
            vcpu=1,
            memory_mb=1024,
            root_volume=Volume(id="root", image="img:v1"),
            kernel=ContainerFileSource(image="kernel:v1"),
            network_interfaces=[NetworkInterface(guest_device_name="eth0", type="tap")],
        )

        assert spec.additional_volumes == ()
        assert spec.initrd is None
        assert isinstance(spec.network_interfaces, tuple)

    def test_volumes_property(self, spec_record):
        """Test that root volume comes first."""
        spec = MicrovmSpec.model_validate(spec_record)

        assert [v.id for v in spec.volumes] == ["root", "data"]

    def test_spec_is_immutable(self, spec_record):
        """Test that specs cannot be modified after creation."""
        spec = MicrovmSpec.model_validate(spec_record)

        with pytest.raises(ValidationError):
            spec.vcpu = 4

    def test_unknown_interface_type_rejected(self, spec_record):
        """Test that interface types are not coerced."""
        spec_record["networkInterfaces"][0]["type"] = "bridge"

        with pytest.raises(ValidationError) as exc_info:
            MicrovmSpec.model_validate(spec_record)

        assert "networkInterfaces" in str(exc_info.value)

    def test_missing_kernel_rejected(self, spec_record):
        """Test that a kernel is required."""
        del spec_record["kernel"]

        with pytest.raises(ValidationError) as exc_info:
            MicrovmSpec.model_validate(spec_record)

        assert "kernel" in str(exc_info.value)

    def test_to_record_uses_api_names(self, spec_record):
        """Test serialisation back to the declarative record."""
        record = MicrovmSpec.model_validate(spec_record).to_record()

        assert record["memoryMb"] == 2048
        assert record["rootVolume"]["id"] == "root"
        assert record["volumes"][0]["readOnly"] is True
        assert record["networkInterfaces"][0]["guestDeviceName"] == "eth0"
        assert record["networkInterfaces"][1]["type"] == "macvtap"
        assert "memory_mb" not in record

    def test_record_roundtrip_is_equal(self, spec_record):
        """Test that a serialised spec parses back to an equal value."""
        spec = MicrovmSpec.model_validate(spec_record)

        assert MicrovmSpec.model_validate(spec.to_record()) == spec


class TestMicrovm:
    """Test the named Microvm declaration."""

    def test_labels_default_empty(self, spec_record):
        """Test that labels are optional."""
        microvm = Microvm(name="vm1", spec=MicrovmSpec.model_validate(spec_record))

        assert microvm.name == "vm1"
        assert microvm.labels == {}
