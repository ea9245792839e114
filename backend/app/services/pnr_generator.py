"""
内部 PNR 生成器

拆分报名使用系统生成的内部 PNR：5 个大写字母 + 5 个数字（共 10 位）。
内部 PNR 同时充当查询凭据，因此使用 secrets（CSPRNG）而不是 random。
唯一性由调用方查询已占用的 PNR 保证，生成器本身不访问数据库。
"""
import re
import secrets
import string

INTERNAL_PNR_LETTERS = 5
INTERNAL_PNR_DIGITS = 5
INTERNAL_PNR_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{5}$")


def generate_internal_pnr() -> str:
    """生成一个内部 PNR，例如 ABCDE12345"""
    letters = "".join(secrets.choice(string.ascii_uppercase) for _ in range(INTERNAL_PNR_LETTERS))
    digits = "".join(secrets.choice(string.digits) for _ in range(INTERNAL_PNR_DIGITS))
    return letters + digits


def is_internal_pnr_format(pnr: str) -> bool:
    """是否符合内部 PNR 格式"""
    if not isinstance(pnr, str):
        return False
    return INTERNAL_PNR_PATTERN.fullmatch(pnr) is not None
