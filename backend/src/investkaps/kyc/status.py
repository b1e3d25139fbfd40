"""KRA status code mapping"""

STATUS_CODES = {
    "01": "REGISTERED",
    "02": "PENDING",
    "03": "ON_HOLD",
    "04": "REJECTED",
    "05": "INCOMPLETE",
    "06": "DEACTIVATED",
    "07": "VERIFIED",
    "08": "SUSPENDED",
    "09": "EXPIRED",
    "10": "MODIFIED",
}

VERIFIED_CODE = "07"
ACTIONABLE_CODES = {"02", "05"}


def map_status(code: str | None) -> dict:
    """KRA APP_STATUS code -> {code, status, is_verified, requires_action}"""
    code = (code or "").strip()
    if code.isdigit():
        code = code.zfill(2)
    return {
        "code": code,
        "status": STATUS_CODES.get(code, "UNKNOWN"),
        "is_verified": code == VERIFIED_CODE,
        "requires_action": code in ACTIONABLE_CODES,
    }
