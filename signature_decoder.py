"""
EVM call-data decoding against a table of well-known method signatures
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from models import DecodedInput, DecodedParam

logger = logging.getLogger(__name__)

NATIVE_TRANSFER = "0x"
NATIVE_TRANSFER_NAME = "Native Transfer"
UNKNOWN_METHOD = "Unknown"

# selector -> (method name, [(param type, param name), ...])
KNOWN_SELECTORS: Dict[str, Tuple[str, List[Tuple[str, str]]]] = {
    # ERC-20
    "0xa9059cbb": ("transfer", [("address", "to"), ("uint256", "amount")]),
    "0x095ea7b3": ("approve", [("address", "spender"), ("uint256", "amount")]),
    "0x23b872dd": (
        "transferFrom",
        [("address", "from"), ("address", "to"), ("uint256", "amount")],
    ),
    "0x39509351": (
        "increaseAllowance",
        [("address", "spender"), ("uint256", "addedValue")],
    ),
    "0xa457c2d7": (
        "decreaseAllowance",
        [("address", "spender"), ("uint256", "subtractedValue")],
    ),
    "0x40c10f19": ("mint", [("address", "to"), ("uint256", "amount")]),
    "0x42966c68": ("burn", [("uint256", "amount")]),
    "0x79cc6790": ("burnFrom", [("address", "account"), ("uint256", "amount")]),
    "0x70a08231": ("balanceOf", [("address", "account")]),
    "0xdd62ed3e": ("allowance", [("address", "owner"), ("address", "spender")]),
    "0x18160ddd": ("totalSupply", []),
    # ERC-721
    "0x42842e0e": (
        "safeTransferFrom",
        [("address", "from"), ("address", "to"), ("uint256", "tokenId")],
    ),
    "0xb88d4fde": (
        "safeTransferFrom",
        [
            ("address", "from"),
            ("address", "to"),
            ("uint256", "tokenId"),
            ("bytes", "data"),
        ],
    ),
    "0xa22cb465": (
        "setApprovalForAll",
        [("address", "operator"), ("bool", "approved")],
    ),
    "0x6352211e": ("ownerOf", [("uint256", "tokenId")]),
    "0xc87b56dd": ("tokenURI", [("uint256", "tokenId")]),
    # Wrapped native token
    "0xd0e30db0": ("deposit", []),
    "0x2e1a7d4d": ("withdraw", [("uint256", "amount")]),
}


def _render(value: Any) -> Any:
    """Big integers become decimal strings, bytes become 0x hex"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_render(v) for v in value]
    return value


def _normalize(input_data: Optional[str]) -> str:
    data = (input_data or "").strip().lower()
    if data and not data.startswith("0x"):
        data = "0x" + data
    return data


def decode_input(input_data: Optional[str]) -> DecodedInput:
    """
    Decode EVM call data

    Args:
        input_data: 0x-prefixed hex call data (empty for a plain value transfer)

    Returns:
        DecodedInput; unknown selectors and undecodable payloads yield an
        empty parameter list. Never raises.
    """
    data = _normalize(input_data)
    if not data or data == NATIVE_TRANSFER:
        return DecodedInput(method_id=NATIVE_TRANSFER, method_name=NATIVE_TRANSFER_NAME)

    selector = data[:10]
    signature = KNOWN_SELECTORS.get(selector)
    if signature is None:
        return DecodedInput(method_id=selector, method_name=UNKNOWN_METHOD)

    method_name, params = signature
    if not params:
        return DecodedInput(method_id=selector, method_name=method_name)

    try:
        payload = bytes.fromhex(data[10:])
        values = decode([ptype for ptype, _ in params], payload)
    except (ValueError, DecodingError) as e:
        logger.debug(f"Could not decode {method_name} call data: {e}")
        return DecodedInput(method_id=selector, method_name=method_name)
    except Exception as e:
        logger.warning(f"Unexpected error decoding {method_name} call data: {e}")
        return DecodedInput(method_id=selector, method_name=method_name)

    return DecodedInput(
        method_id=selector,
        method_name=method_name,
        params=[
            DecodedParam(name=pname, type=ptype, value=_render(value))
            for (ptype, pname), value in zip(params, values)
        ],
    )
