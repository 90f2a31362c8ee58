from offramp.utils.hashing import generate_hash, generate_chain_hash
from offramp.utils.validators import validate_pan, validate_aadhaar, validate_upi_vpa, validate_ifsc

__all__ = [
    "generate_hash", "generate_chain_hash",
    "validate_pan", "validate_aadhaar", "validate_upi_vpa", "validate_ifsc",
]
