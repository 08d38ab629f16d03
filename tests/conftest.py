import io

import numpy as np
import pytest
from PIL import Image

from imprint.core.database import InMemoryRecordStore
from imprint.models.record import UsagePolicy
from imprint.services.identity import KeyPair
from imprint.services.provenance import build_signed_record

# RFC 8032 test 1 secret key
RFC8032_SEED = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
RFC8032_PUBLIC = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"


def make_image(seed=1, size=256, fmt="PNG", quality=90, resize=None):
    """Smooth synthetic image: an 8x8 random colour grid upsampled bicubically."""
    rng = np.random.default_rng(seed)
    grid = rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
    image = Image.fromarray(grid).resize((size, size), Image.Resampling.BICUBIC)
    if resize:
        image = image.resize(resize, Image.Resampling.BILINEAR)
    buf = io.BytesIO()
    if fmt == "JPEG":
        image.save(buf, format="JPEG", quality=quality)
    else:
        image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def key_pair():
    return KeyPair.from_private_key(RFC8032_SEED)


@pytest.fixture
def other_key_pair():
    return KeyPair.from_private_key("4ccd089b28ff96da9db6c346ec114e0f5b8a319f35aba624da8cf6ed4fb8a6fb")


@pytest.fixture
def policy():
    return UsagePolicy(license="CC0")


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def image_bytes():
    return make_image


@pytest.fixture
def make_record(key_pair, policy):
    """Build signed records for arbitrary content with the default keypair."""
    def _make(content=b"hello provenance", title="T", content_type="text/plain",
              signed_at="2024-05-01T12:00:00.000Z", signer=None, **kwargs):
        return build_signed_record(
            content,
            signer or key_pair,
            title=title,
            display_name="Ada",
            usage_policy=kwargs.pop("usage_policy", policy),
            file_name=kwargs.pop("file_name", "work.bin"),
            content_type=content_type,
            signed_at=signed_at,
            **kwargs,
        )
    return _make
