"""
已购文件测试
"""

import pytest

from hazel.exceptions import TruncatedInputError
from tools.purchases import (
    XOR_PERIOD,
    decode_purchases,
    encode_purchases,
    read_purchase_file,
    write_purchase_file,
    xor_mask,
)


class TestXorMask:
    def test_mask_is_index_mod_212(self):
        data = bytes(XOR_PERIOD + 2)
        masked = xor_mask(data)
        assert masked[:3] == b"\x00\x01\x02"
        assert masked[XOR_PERIOD:] == b"\x00\x01"

    def test_mask_is_involution(self):
        data = bytes(range(256)) * 2
        assert xor_mask(xor_mask(data)) == data


class TestPurchaseEncoding:
    """编码与解码"""

    def test_known_bytes(self):
        # 02 'a' 'b' 00 逐字节异或 0,1,2,3
        assert encode_purchases(["ab"]) == b"\x02\x60\x60\x03"
        assert decode_purchases(b"\x02\x60\x60\x03") == ["ab"]

    def test_empty_list(self):
        assert encode_purchases([]) == b"\x00"
        assert decode_purchases(b"\x00") == []

    def test_missing_terminator(self):
        with pytest.raises(TruncatedInputError):
            decode_purchases(xor_mask(b"\x02ab"))

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            encode_purchases(["hat_1", ""])


class TestPurchaseFile:
    def test_file_spanning_mask_period(self, tmp_path):
        path = tmp_path / "secureNew"
        values = ["f" * 150, "pet_crewmate", "g" * 100]
        write_purchase_file(path, values)
        assert len(path.read_bytes()) > XOR_PERIOD
        assert read_purchase_file(path) == values
