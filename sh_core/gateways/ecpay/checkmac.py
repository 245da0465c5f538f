"""
ECPay CheckMacValue 计算与验证

算法：
1. 去掉 CheckMacValue，参数名不分大小写排序
2. 组成 HashKey=...&k1=v1&...&HashIV=...
3. URL 编码（.NET 规则：- _ . ! * ( ) 不编码）后转小写
4. SHA256（金流）或 MD5（物流）后转大写
"""
import hashlib
import hmac
from enum import Enum
from typing import Any, Mapping
from urllib.parse import quote_plus

CHECK_MAC_FIELD = "CheckMacValue"

# 与 .NET HttpUtility.UrlEncode 对齐的安全字符
_DOTNET_SAFE_CHARS = "-_.!*()"


class CheckMacMethod(str, Enum):
    SHA256 = "sha256"
    MD5 = "md5"


def _canonical_string(params: Mapping[str, Any], hash_key: str, hash_iv: str) -> str:
    pairs = sorted(
        ((k, v) for k, v in params.items() if k != CHECK_MAC_FIELD),
        key=lambda kv: kv[0].lower()
    )
    body = "&".join(f"{k}={'' if v is None else v}" for k, v in pairs)
    raw = f"HashKey={hash_key}&{body}&HashIV={hash_iv}"
    return quote_plus(raw, safe=_DOTNET_SAFE_CHARS).lower()


def compute_check_mac_value(
    params: Mapping[str, Any],
    hash_key: str,
    hash_iv: str,
    method: CheckMacMethod = CheckMacMethod.SHA256
) -> str:
    """计算检查码（大写十六进制）"""
    encoded = _canonical_string(params, hash_key, hash_iv).encode("utf-8")
    if method == CheckMacMethod.MD5:
        digest = hashlib.md5(encoded).hexdigest()
    else:
        digest = hashlib.sha256(encoded).hexdigest()
    return digest.upper()


def verify_check_mac_value(
    params: Mapping[str, Any],
    hash_key: str,
    hash_iv: str,
    method: CheckMacMethod = CheckMacMethod.SHA256
) -> bool:
    """常数时间比较回调中的检查码"""
    received = params.get(CHECK_MAC_FIELD)
    if not received:
        return False
    expected = compute_check_mac_value(params, hash_key, hash_iv, method)
    return hmac.compare_digest(expected, str(received).upper())
