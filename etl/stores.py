import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse


@dataclass(frozen=True)
class StoreMeta:
    id: str
    name: str
    default_country_code: str
    domains: List[str] = field(default_factory=list)
    logo_url: Optional[str] = None


STORE_REGISTRY = {
    'emag': StoreMeta('emag', 'eMAG', 'RO', ['emag.ro'], 'https://www.emag.ro/favicon.ico'),
    'altex': StoreMeta('altex', 'Altex', 'RO', ['altex.ro'], 'https://www.altex.ro/favicon.ico'),
    'pcgarage': StoreMeta('pcgarage', 'PC Garage', 'RO', ['pcgarage.ro'], 'https://www.pcgarage.ro/favicon.ico'),
    'flanco': StoreMeta('flanco', 'Flanco', 'RO', ['flanco.ro'], 'https://www.flanco.ro/favicon.ico'),
    'amazon_de': StoreMeta('amazon_de', 'Amazon.de', 'DE', ['amazon.de'], 'https://www.amazon.de/favicon.ico'),
    'other_eu': StoreMeta('other_eu', 'Other EU Store', 'RO'),
}

STORE_ID_PATTERN = re.compile(r'^[a-z0-9_-]+$', re.IGNORECASE)

KNOWN_BRANDS = [
    'Apple', 'Samsung', 'Xiaomi', 'Huawei', 'Google', 'OnePlus', 'Sony', 'Asus', 'Lenovo',
    'HP', 'Dell', 'Acer', 'MSI', 'Microsoft', 'Realme', 'Motorola', 'Philips', 'LG',
    'Logitech', 'JBL', 'Bose', 'Braun', 'Oral-B', 'Dyson', 'Tefal', 'DeLonghi', 'Nikon', 'Canon',
]

UNKNOWN_BRAND = 'Unknown'


def get_store_meta(store_id):
    if not store_id:
        return None
    return STORE_REGISTRY.get(str(store_id).strip().lower())


def is_valid_store_id(store_id):
    return bool(store_id) and bool(STORE_ID_PATTERN.match(str(store_id).strip()))


def normalize_store_name(store_id, fallback_name):
    """Registry display name for known store ids; the caller's name otherwise."""
    meta = get_store_meta(store_id)
    if meta:
        return meta.name
    return fallback_name


def default_country_for_store(store_id, fallback=None):
    meta = get_store_meta(store_id)
    if meta:
        return meta.default_country_code
    if fallback and str(fallback).strip():
        return str(fallback).strip().upper()
    return None


def store_logo_url(store_id):
    meta = get_store_meta(store_id)
    return meta.logo_url if meta else None


def hostname_of(url):
    if not url:
        return None
    try:
        host = urlparse(str(url).strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith('www.') else host


def store_id_for_domain(url_or_host):
    """Map a URL or bare hostname to a registry id, matching subdomains too."""
    host = hostname_of(url_or_host) if '/' in str(url_or_host or '') else str(url_or_host or '').lower()
    if not host:
        return None
    for meta in STORE_REGISTRY.values():
        if any(host == d or host.endswith('.' + d) for d in meta.domains):
            return meta.id
    return None


def extract_store_from_url(url):
    """Store display name for a listing URL: registry name, else bare hostname, else 'unknown'."""
    host = hostname_of(url)
    if not host:
        return 'unknown'
    store_id = store_id_for_domain(host)
    return normalize_store_name(store_id, host)


def detect_brand_from_name(name, default=UNKNOWN_BRAND):
    if not name or not isinstance(name, str):
        return default
    lower_name = name.lower().strip()
    for brand in KNOWN_BRANDS:
        # Whole token only: "HPE" is not HP.
        if re.search(r'(?<![a-z0-9])' + re.escape(brand.lower()) + r'(?![a-z0-9])', lower_name):
            return brand
    return default
