"""Tests for image artifact resolution."""

import pytest

from microvm.exceptions import ResourceResolutionError
from microvm.providers.image import ImageCacheResolver, cache_key


@pytest.fixture
def resolver(tmp_path):
    return ImageCacheResolver(tmp_path, unavailable={"registry.local/missing:v1"})


class TestCacheKey:
    """Test cache directory naming."""

    def test_cache_key(self):
        """Test separators are replaced."""
        assert cache_key("registry.local:5000/kernels/vmlinux:6.1") == "registry.local_5000_kernels_vmlinux_6.1"

    def test_cache_key_is_stable(self):
        assert cache_key("img:v1") == cache_key("img:v1")
        assert cache_key("img:v1") != cache_key("img:v2")


@pytest.mark.asyncio
class TestImageCacheResolver:
    """Test ImageCacheResolver."""

    @pytest.mark.parametrize("image", [
        "ubuntu",
        "ubuntu:22.04",
        "registry.local:5000/kernels/vmlinux:6.1",
        "ghcr.io/org/rootfs@sha256:" + "a" * 64,
    ])
    async def test_resolve_valid_reference(self, resolver, tmp_path, image):
        """Test well formed references map into the cache."""
        path = await resolver.resolve(image)

        assert path == tmp_path / cache_key(image)

    async def test_resolve_file_within_image(self, resolver, tmp_path):
        """Test resolving a file inside an image."""
        path = await resolver.resolve("kernel:v1", "/boot/vmlinux")

        assert path == tmp_path / "kernel_v1" / "boot" / "vmlinux"

    @pytest.mark.parametrize("image", ["", "Ubuntu", "name:", "bad image"])
    async def test_invalid_reference(self, resolver, image):
        """Test malformed references fail to resolve."""
        with pytest.raises(ResourceResolutionError, match="Invalid image reference"):
            await resolver.resolve(image)

    async def test_unavailable_image(self, resolver):
        """Test an image the registry cannot serve."""
        with pytest.raises(ResourceResolutionError, match="could not be fetched"):
            await resolver.resolve("registry.local/missing:v1")
