"""
Category inference for ingested products.

Text is folded to lowercase ascii words (diacritics stripped) with slugify and
matched word by word against ordered keyword rules. The first rule whose
keywords match and whose negative keywords do not wins; nothing matching
means the product stays uncategorized.
"""
import re
from functools import lru_cache

from slugify import slugify

CATEGORY_KEYS = [
    'Laptops',
    'Phones',
    'Monitors',
    'Headphones & Audio',
    'Keyboards & Mouse',
    'TV & Display',
    'Tablets',
    'Smartwatches',
    'Home & Garden',
    'Personal Care',
    'Small Appliances',
    'Wellness & Supplements',
    'Gifts & Lifestyle',
    'Books & Media',
    'Toys & Games',
    'Kitchen',
]

# Evaluated top to bottom; more specific device families sit above Phones so
# "Galaxy Tab" and "Galaxy Watch" land in their own category.
CATEGORY_RULES = [
    ('Laptops', ['laptop', 'laptops', 'notebook', 'macbook', 'ultrabook', 'chromebook', 'thinkpad']),
    ('Tablets', ['tablet', 'tablets', 'tableta', 'tablete', 'ipad', 'galaxy tab']),
    ('Smartwatches', ['smartwatch', 'smartwatches', 'ceas inteligent', 'ceas smart', 'apple watch', 'galaxy watch']),
    ('Phones', [
        'phone', 'phones', 'smartphone', 'smartphones', 'telefon', 'telefoane', 'telefon mobil',
        'telefoane mobile', 'mobil', 'iphone', 'galaxy', 'pixel', 'redmi', 'moto g',
    ]),
    ('TV & Display', ['tv', 'televizor', 'televizoare', 'smart tv', 'monitor tv', 'oled tv']),
    ('Monitors', ['monitor', 'monitoare', 'display']),
    ('Headphones & Audio', [
        'headphone', 'headphones', 'headset', 'earbuds', 'earphones', 'audio', 'casti', 'casti audio',
        'boxa', 'boxe', 'speaker', 'soundbar',
    ]),
    ('Keyboards & Mouse', ['keyboard', 'keyboards', 'mouse', 'mice', 'tastatura', 'tastaturi', 'mouse uri']),
    ('Kitchen', [
        'kitchen', 'bucatarie', 'ustensile bucatarie', 'espressor', 'espresso', 'blender', 'mixer',
        'fierbator', 'kettle', 'microunde', 'microwave', 'toaster', 'prajitor', 'airfryer', 'air fryer',
    ]),
    ('Small Appliances', [
        'small appliances', 'electrocasnice mici', 'aparat', 'aparat de bucatarie', 'aspirator',
        'vacuum', 'fier de calcat', 'purificator',
    ]),
    ('Personal Care', [
        'personal care', 'ingrijire personala', 'ingrijire', 'sampon', 'shampoo', 'pasta de dinti',
        'toothpaste', 'periuta', 'toothbrush', 'epilator', 'aparat de ras', 'shaver', 'crema', 'cream',
    ]),
    ('Wellness & Supplements', ['wellness', 'supplement', 'supplements', 'suplimente', 'vitamine', 'vitamin']),
    ('Home & Garden', ['home garden', 'home and garden', 'casa si gradina', 'casa gradina', 'gradina']),
    ('Toys & Games', ['toys', 'jucarii', 'games', 'jocuri', 'lego', 'puzzle']),
    ('Books & Media', ['books', 'book', 'carte', 'carti', 'media', 'ebook']),
    ('Gifts & Lifestyle', ['gifts', 'gift', 'cadouri', 'lifestyle', 'stil de viata']),
]

# Accessory words that disqualify a rule's match for that category only.
NEGATIVE_KEYWORDS = {
    'Phones': [
        'husa', 'case', 'cover', 'carcasa', 'bumper', 'folie', 'screen protector', 'protector', 'geam',
        'glass', 'casti', 'headphone', 'headphones', 'headset', 'earbuds', 'buds', 'earphones', 'handsfree',
        'speaker', 'speakers', 'boxa', 'boxe', 'soundbar', 'incarcator', 'charger', 'powerbank', 'cablu',
        'cable', 'adaptor', 'adapter', 'dock', 'suport', 'holder', 'stand', 'mount',
    ],
    'Tablets': ['husa', 'case', 'cover', 'folie', 'screen protector', 'stylus'],
    'Smartwatches': ['curea', 'strap', 'folie', 'screen protector'],
    'Laptops': ['rucsac', 'backpack', 'geanta', 'sleeve', 'cooling pad', 'cooler'],
    'Monitors': ['suport', 'stand', 'mount', 'bracket', 'arm'],
    'Headphones & Audio': ['cablu', 'cable', 'adaptor', 'adapter'],
}

FEED_CATEGORY_TO_CANONICAL = {
    'notebook': 'Laptops',
    'notebook / laptop': 'Laptops',
    'laptopuri': 'Laptops',
    'laptop': 'Laptops',
    'laptops': 'Laptops',
    'mini sisteme pc': 'Laptops',
    'all in one pc': 'Laptops',
    'telefoane mobile': 'Phones',
    'phone': 'Phones',
    'phones': 'Phones',
    'smartphone': 'Phones',
    'smartphones': 'Phones',
    'accesorii smartphone': 'Phones',
    'monitoare lcd si led': 'Monitors',
    'monitoare led': 'Monitors',
    'monitor': 'Monitors',
    'monitor gaming': 'Monitors',
    'televizoare': 'TV & Display',
    'televizoare led': 'TV & Display',
    'tv': 'TV & Display',
    'videoproiectoare': 'TV & Display',
    'casti': 'Headphones & Audio',
    'casti gaming': 'Headphones & Audio',
    'headphones': 'Headphones & Audio',
    'boxe': 'Headphones & Audio',
    'boxe portabile': 'Headphones & Audio',
    'sisteme home cinema': 'Headphones & Audio',
    'mouse': 'Keyboards & Mouse',
    'mouse gaming': 'Keyboards & Mouse',
    'tastaturi': 'Keyboards & Mouse',
    'keyboard': 'Keyboards & Mouse',
    'kit tastatura + mouse': 'Keyboards & Mouse',
    'gamepad': 'Keyboards & Mouse',
    'tablete': 'Tablets',
    'tablet': 'Tablets',
    'tablets': 'Tablets',
    'smartwatch': 'Smartwatches',
    'smart watch': 'Smartwatches',
    'bratari fitness': 'Smartwatches',
    'diverse cosmetice': 'Personal Care',
    'sampon si balsam': 'Personal Care',
    'periute de dinti electrice': 'Personal Care',
    'beauty skincare': 'Personal Care',
    'beauty haircare': 'Personal Care',
    'aparate de ras electrice': 'Personal Care',
    'epilatoare': 'Personal Care',
    'uscatoare de par': 'Personal Care',
    'supplements vitamins & minerals': 'Wellness & Supplements',
    'supplements immunity & cold': 'Wellness & Supplements',
    'cantare corporale': 'Wellness & Supplements',
    'aspiratoare': 'Small Appliances',
    'robot vacuum': 'Small Appliances',
    'masini de spalat rufe': 'Small Appliances',
    'small kitchen appliances': 'Kitchen',
    'fierbatoare': 'Kitchen',
    'cuptoare cu microunde': 'Kitchen',
    'blendere': 'Kitchen',
    'espressoare cafea': 'Kitchen',
    'jucarii': 'Toys & Games',
    'seturi de constructie': 'Toys & Games',
    'console jocuri': 'Toys & Games',
    'home & bedding': 'Home & Garden',
    'home lighting & lamps': 'Home & Garden',
    'ebook reader': 'Books & Media',
    'office & school': 'Books & Media',
    'pet food': 'Gifts & Lifestyle',
    'coffee': 'Gifts & Lifestyle',
}

MANUKA_PERSONAL_CARE_KEYWORDS = [
    'crema', 'cream', 'balsam', 'balsam de buze', 'lip balm', 'pasta de dinti', 'toothpaste',
    'gel de dus', 'shower gel', 'soap', 'sapun', 'spray bucal', 'spray oral pentru gat',
    'hand cream', 'foot cream',
]

PERSONAL_CARE_CAMPAIGN_WORDS = ['cosmetic', 'beauty', 'skin', 'cream']

SUBCATEGORY_KEYWORDS = {
    'Personal Care': [
        ('shampoo', ['sampon', 'shampoo']),
        ('conditioner', ['balsam pentru par', 'balsam de par', 'conditioner']),
        ('hair-dye', ['vopsea', 'vopsea par', 'hair dye', 'colorant']),
        ('lip-balm', ['balsam de buze', 'balsam pentru buze', 'lip balm']),
        ('toothpaste', ['pasta de dinti', 'toothpaste']),
        ('body-cream', ['crema de corp', 'body lotion', 'body cream', 'crema pentru corp']),
    ],
    'Laptops': [
        ('gaming-laptop', ['gaming', 'rtx']),
        ('ultrabook', ['ultrabook', 'macbook air', 'thin and light']),
    ],
    'Headphones & Audio': [
        ('earbuds', ['earbuds', 'true wireless', 'tws']),
        ('speakers', ['boxa', 'boxe', 'speaker', 'soundbar']),
        ('over-ear', ['over ear', 'over head', 'headphones']),
    ],
}


def normalize_text(text):
    """Lowercase ascii words separated by single spaces."""
    if not text:
        return ''
    return slugify(str(text), separator=' ')


@lru_cache(maxsize=None)
def _keyword_pattern(keyword):
    return re.compile(r'\b' + re.escape(normalize_text(keyword)) + r'\b')


def contains_keyword(normalized_text, keyword):
    if not normalized_text:
        return False
    return bool(_keyword_pattern(keyword).search(normalized_text))


def _contains_any(normalized_text, keywords):
    return any(contains_keyword(normalized_text, kw) for kw in keywords)


_FEED_LOOKUP = {normalize_text(k): v for k, v in FEED_CATEGORY_TO_CANONICAL.items()}


def is_valid_category_key(slug):
    return slug in CATEGORY_KEYS


def map_feed_category(feed_category):
    if not feed_category:
        return None
    return _FEED_LOOKUP.get(normalize_text(feed_category))


def _category_from_campaign(campaign_name, text):
    campaign = campaign_name.lower()
    if 'manuka' in campaign:
        if _contains_any(text, MANUKA_PERSONAL_CARE_KEYWORDS):
            return 'Personal Care'
        return 'Wellness & Supplements'
    if any(word in campaign for word in PERSONAL_CARE_CAMPAIGN_WORDS):
        return 'Personal Care'
    return None


def _category_from_rules(text):
    for category, keywords in CATEGORY_RULES:
        if not _contains_any(text, keywords):
            continue
        if _contains_any(text, NEGATIVE_KEYWORDS.get(category, [])):
            continue
        return category
    return None


def infer_category_slug(title, description=None, campaign_name=None, explicit_category_slug=None,
                        feed_category=None):
    """
    Canonical category for an incoming product, or None when no rule is confident.

    An explicit non-empty category is trusted and returned as-is, which makes
    the function idempotent on its own output.
    """
    if explicit_category_slug and str(explicit_category_slug).strip():
        return str(explicit_category_slug).strip()

    mapped = map_feed_category(feed_category)
    if mapped:
        return mapped

    text = normalize_text(' '.join(filter(None, [title, description])))

    if campaign_name:
        from_campaign = _category_from_campaign(campaign_name, text)
        if from_campaign:
            return from_campaign

    if not text:
        return None
    return _category_from_rules(text)


def infer_category_slug_from_ingestion(data):
    """Dict form used by payload-driven callers (camelCase or snake_case keys)."""
    def pick(*keys):
        return next((data[k] for k in keys if data.get(k)), None)

    return infer_category_slug(
        pick('title', 'name'),
        description=pick('description'),
        campaign_name=pick('campaignName', 'campaign_name'),
        explicit_category_slug=pick('explicitCategorySlug', 'explicit_category_slug'),
        feed_category=pick('feedCategory', 'feed_category'),
    )


def infer_subcategory(category, title, description=None):
    rules = SUBCATEGORY_KEYWORDS.get(category)
    text = normalize_text(' '.join(filter(None, [title, description])))
    if not rules or not text:
        return None
    for subcategory, keywords in rules:
        if _contains_any(text, keywords):
            return subcategory
    return None
