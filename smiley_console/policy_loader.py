import json
from decimal import Decimal
from pathlib import Path
from threading import Lock

from smiley_console.config import is_dev_mode

# Path to JSON files
DATA_PATH = Path(__file__).resolve().parent / "data"

# Module-level caches
_cached_policy = None
_cached_concepts = None
_cached_concepts_map = None

# Lock to make cache thread-safe
_cache_lock = Lock()


def load_json(file_name: str):
    """Load a JSON file from the data folder."""
    file_path = DATA_PATH / file_name
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def reset_cache():
    """Manually reset all caches."""
    global _cached_policy, _cached_concepts, _cached_concepts_map
    with _cache_lock:
        _cached_policy = None
        _cached_concepts = None
        _cached_concepts_map = None


def _load_policy():
    global _cached_policy
    _cached_policy = load_json("settlement_policy.json")


def _load_concepts():
    global _cached_concepts, _cached_concepts_map
    _cached_concepts = load_json("expense_concepts.json")
    _cached_concepts_map = {c["concepto"]: c for c in _cached_concepts}


with _cache_lock:
    _load_policy()
    _load_concepts()


# --- Public API ---
def get_policy():
    with _cache_lock:
        if is_dev_mode() or _cached_policy is None:
            _load_policy()
        return _cached_policy


def get_expense_concepts():
    with _cache_lock:
        if is_dev_mode() or _cached_concepts is None:
            _load_concepts()
        return _cached_concepts


def get_expense_concept(concepto: str):
    with _cache_lock:
        if is_dev_mode() or _cached_concepts_map is None:
            _load_concepts()
        return _cached_concepts_map.get(concepto)


def default_doctor_percentage(tier_id) -> Decimal:
    """Fallback doctor share for a percentage tier when the tier cannot be fetched."""
    tiers = get_policy()["doctor_tiers"]
    value = tiers.get(str(tier_id), tiers["default"])
    return Decimal(str(value))


def assistant_percentage(owned_patient: bool) -> Decimal:
    rates = get_policy()["assistant_rates"]
    key = "owned_patient" if owned_patient else "clinic_patient"
    return Decimal(str(rates[key]))


def cash_payment_method() -> str:
    return get_policy()["cash_payment_method"]


def estadio_sede_id() -> int:
    return int(get_policy()["estadio_sede_id"])
