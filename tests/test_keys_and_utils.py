from wechat_archive.keys import is_hex_key, mask_key, normalize_key
from wechat_archive.utils import coerce_int, escape_like, md5_digest, normalize_digest


def test_normalize_key_strips_prefix_and_whitespace():
    assert normalize_key("0xABCDEF") == "ABCDEF"
    assert normalize_key("0Xabcdef") == "abcdef"
    assert normalize_key("  0xabc  \n") == "abc"
    assert normalize_key("abc") == "abc"
    assert normalize_key("") == ""


def test_normalize_key_only_strips_one_leading_marker():
    assert normalize_key("0x0xab") == "0xab"
    assert normalize_key("ab0x") == "ab0x"


def test_is_hex_key():
    assert is_hex_key("deadBEEF01")
    assert not is_hex_key("")
    assert not is_hex_key("xyz")
    assert not is_hex_key("ab'; DROP")


def test_mask_key_never_reveals_full_key():
    key = "ab" * 32
    masked = mask_key(key)
    assert key not in masked
    assert masked.startswith("abab")
    assert mask_key("short") == "*****"


def test_md5_digest_matches_known_value():
    assert md5_digest("hello") == "5d41402abc4b2a76b9719d911017c592"


def test_normalize_digest_is_case_insensitive_and_strict():
    assert normalize_digest("5D41402ABC4B2A76B9719D911017C592") == "5d41402abc4b2a76b9719d911017c592"
    assert normalize_digest("5d41402abc") is None
    assert normalize_digest("zz41402abc4b2a76b9719d911017c592") is None


def test_coerce_int_handles_archive_values():
    assert coerce_int("1690000000") == 1690000000
    assert coerce_int(3.0) == 3
    assert coerce_int("49.0") == 49
    assert coerce_int(None, default=-1) == -1
    assert coerce_int("n/a", default=7) == 7


def test_escape_like_escapes_wildcards():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"
