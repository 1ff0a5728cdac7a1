"""Key blocks produced by an independent TR-31 implementation."""
import psec
import pytest

from conftest import IPEK, KBPK
from rki_tr31 import decrypt_key_block


@pytest.mark.parametrize("version", ["A", "B"])
def test_decodes_psec_key_block(version):
    header = psec.tr31.Header(
        version_id=version,
        key_usage="B1",
        algorithm="T",
        mode_of_use="X",
        version_num="00",
        exportability="N",
    )
    key_block = psec.tr31.wrap(kbpk=KBPK, header=header, key=IPEK)

    result = decrypt_key_block(key_block, KBPK)

    assert result.plain_key == IPEK
    assert result.version == version
    assert result.mac_verified is True
