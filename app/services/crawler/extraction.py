"""Maps page scripts and the pure parsers that turn their output into models.

The in-page scripts only collect raw strings; every decision about what a
string means happens in Python so it can be tested without a browser.
"""

from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import quote

from app.core.text import turkish_lower
from app.schemas.crawl import RestaurantFacts, ScrapedReviewData, SearchListing

MAPS_BASE_URL = "https://www.google.com/maps"
STAR_FILTER_DATA = "data=!3m1!1e3!4m4!2m3!5m1!4e3!6e5"

FEED_SELECTORS = (
    'div[role="feed"]',
    'div[class*="m6QErb"][class*="DxyBCb"]',
    'div[class*="m6QErb"]',
)
REVIEW_SCROLL_SELECTORS = (
    'div[class*="m6QErb"][class*="DxyBCb"]',
    'div[class*="m6QErb"]',
    'div[role="main"]',
    'div[tabindex="-1"]',
)

RATING_LABEL_RE = re.compile(r"([\d,\.]+)\s*(yıldız|star)", re.IGNORECASE)
REVIEW_COUNT_RE = re.compile(r"\(?([\d.,]+)\)?")
RELATIVE_TIME_RE = re.compile(r"\b(önce|ago)\b", re.IGNORECASE)
PRICE_PER_PERSON_RE = re.compile(r"kişi başı[:\s]*([\d.,]+(?:\s*[-–]\s*[\d.,]+)?\s*₺)", re.IGNORECASE)
PRICE_LEVEL_RE = re.compile(r"(₺{1,4}|\${1,4})(?!\s*\d)")
COORDS_AT_RE = re.compile(r"@(-?[\d.]+),(-?[\d.]+)")
COORDS_DATA_RE = re.compile(r"!3d(-?[\d.]+)!4d(-?[\d.]+)")
PLACE_ID_RE = re.compile(r"(ChIJ[\w-]+)|!1s(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
PROFILE_LINE_RE = re.compile(r"(yerel rehber|local guide|\d+\s*(yorum|review|fotoğraf|photo))", re.IGNORECASE)
TRAILING_MORE_RE = re.compile(r"\s*(Diğer|More)\s*$")
ADDRESS_MARKERS = (",", "Mah", "Cad", "Sok", "No")
ADDRESS_EXCLUDES = ("yıldız", "star", "Sponsorlu", "Açık", "Kapalı")
SPONSORED_MARKERS = ("Sponsorlu", "Sponsored", "Ad ·")

KEYWORD_VARIATIONS: dict[str, tuple[str, ...]] = {
    "lahmacun": ("lahmacun", "lahmacunu", "lahmacunlar", "lahmacunları"),
    "kebap": ("kebap", "kebabı", "kebapları", "kebab", "kebaplar"),
    "pide": ("pide", "pidesi", "pideleri", "pideler"),
    "döner": ("döner", "döneri", "dönerler", "dönerleri"),
    "köfte": ("köfte", "köftesi", "köfteler", "köfteleri"),
    "tantuni": ("tantuni", "tantunisi", "tantuniler"),
    "iskender": ("iskender", "iskenderi"),
    "adana": ("adana", "adanası"),
    "urfa": ("urfa", "urfası"),
}

# --------------------------------------------------------------------------
# In-page scripts
# --------------------------------------------------------------------------

CONSENT_ACCEPT_JS = """
() => {
    for (const button of document.querySelectorAll('button')) {
        const text = (button.textContent || '').toLowerCase();
        if (text.includes('tümünü kabul') || text.includes('accept all')) {
            button.click();
            return true;
        }
    }
    return false;
}
"""

CONSENT_FORM_SUBMIT_JS = """
() => {
    const form = document.querySelector('form');
    if (!form) return false;
    const submit = form.querySelector('button[type="submit"], button:not([type="button"])');
    if (!submit) return false;
    submit.click();
    return true;
}
"""

PANEL_SIGNALS_JS = """
() => ({
    has_main: !!document.querySelector('div[role="main"]'),
    has_heading: !!document.querySelector('h1'),
    has_feed: !!document.querySelector('div[role="feed"], div[class*="m6QErb"]'),
    has_reviews: !!document.querySelector('div[data-review-id], div[class*="m6QErb"][class*="DxyBCb"]'),
})
"""

CONTROL_SNAPSHOT_JS = """
() => {
    document.querySelectorAll('[data-crawl-idx]').forEach(el => el.removeAttribute('data-crawl-idx'));
    const rating = document.querySelector('div[class*="F7nice"]');
    const ratingScope = rating ? (rating.parentElement || rating) : null;
    const countPattern = /^\\(?\\d[\\d.,]*\\)?\\s*(yorum|review)/i;
    const seen = new Set();
    const out = [];
    const nodes = document.querySelectorAll(
        'button, a, input, [role="tab"], [role="button"], [role="menuitemradio"], [role="option"], span, div'
    );
    for (const el of nodes) {
        const tag = el.tagName.toLowerCase();
        const role = el.getAttribute('role') || '';
        const text = (el.textContent || '').trim().replace(/\\s+/g, ' ');
        const interactive = tag === 'button' || tag === 'a' || tag === 'input' || role !== '';
        let target = el;
        if (!interactive) {
            if (text.length > 40 || !countPattern.test(text)) continue;
            target = el.closest('button, a, [role="button"]') || el;
        }
        if (seen.has(target)) continue;
        seen.add(target);
        const tablist = target.closest('[role="tablist"]');
        let tabPosition = -1;
        if (tablist) {
            tabPosition = Array.from(tablist.querySelectorAll('button, [role="tab"]')).indexOf(target);
        }
        const idx = out.length;
        target.setAttribute('data-crawl-idx', String(idx));
        out.push({
            idx,
            tag: target.tagName.toLowerCase(),
            text: (target.textContent || '').trim().replace(/\\s+/g, ' ').slice(0, 200),
            aria_label: target.getAttribute('aria-label') || '',
            role: target.getAttribute('role') || '',
            placeholder: target.getAttribute('placeholder') || '',
            in_tablist: !!tablist,
            tab_position: tabPosition,
            near_rating: !!(ratingScope && ratingScope.contains(target)),
        });
    }
    return out;
}
"""

CLICK_BY_IDX_JS = """
(idx) => {
    const el = document.querySelector('[data-crawl-idx="' + idx + '"]');
    if (!el) return false;
    el.click();
    return true;
}
"""

EXPAND_MORE_JS = """
() => {
    let count = 0;
    document.querySelectorAll('button, span').forEach(el => {
        const text = (el.textContent || '').trim();
        if (text === 'Diğer' || text === 'More') {
            el.click();
            count++;
        }
    });
    return count;
}
"""

SCROLL_JS = """
(selectors) => {
    for (const selector of selectors) {
        const el = document.querySelector(selector);
        if (el && el.scrollHeight > el.clientHeight) {
            el.scrollTop = el.scrollHeight;
            return true;
        }
    }
    window.scrollTo(0, document.body.scrollHeight);
    return false;
}
"""

REVIEW_CARDS_JS = """
() => {
    const container = document.querySelector('div[class*="m6QErb"][class*="DxyBCb"]')
        || document.querySelector('div[class*="m6QErb"]');
    if (!container) return [];
    const isStarMarker = span => span.children.length === 5
        && Array.from(span.children).every(c => c.tagName === 'SPAN');
    const cards = new Map();
    container.querySelectorAll('span').forEach(span => {
        if (!isStarMarker(span)) return;
        let current = span;
        for (let depth = 0; depth < 15 && current; depth++) {
            if (current.parentElement === container) break;
            current = current.parentElement;
        }
        if (!current || current.parentElement !== container) return;
        if (!cards.has(current)) cards.set(current, []);
        cards.get(current).push(span);
    });
    const out = [];
    for (const [card, markers] of cards.entries()) {
        const star = markers[0];
        const blocks = [];
        card.querySelectorAll('div, span').forEach(el => {
            if (el.tagName === 'DIV' && el.querySelector(':scope > div')) return;
            if (star.contains(el) || el.contains(star)) return;
            const t = (el.textContent || '').trim();
            if (t.length > 10) blocks.push(t);
        });
        const spans = [];
        card.querySelectorAll('span').forEach(el => {
            if (star.contains(el)) return;
            const t = (el.textContent || '').trim();
            if (t && t.length < 50) spans.push(t);
        });
        const author = card.querySelector('button div');
        out.push({
            star_markers: markers.length,
            star_label: star.getAttribute('aria-label')
                || (star.parentElement && star.parentElement.getAttribute('aria-label')) || '',
            filled_stars: star.querySelectorAll('.elGi1d').length,
            author: author ? (author.textContent || '').trim() : '',
            blocks,
            spans,
            full_text: card.textContent || '',
        });
    }
    return out;
}
"""

LISTING_CARDS_JS = """
() => {
    const cards = [];
    const seen = new Set();
    document.querySelectorAll('div[class*="Nv2PK"], a[class*="hfpxzc"]').forEach(el => {
        const card = el.matches('a') ? (el.closest('div[class*="Nv2PK"]') || el.parentElement || el) : el;
        if (seen.has(card)) return;
        seen.add(card);
        const link = card.matches('a[href]') ? card : card.querySelector('a[href*="/maps/place"], a[class*="hfpxzc"]');
        const nameEl = card.querySelector('div[class*="qBF1Pd"], div[class*="fontHeadlineSmall"]');
        const ratingEl = card.querySelector('span[role="img"][aria-label]');
        const countEl = card.querySelector('span[class*="UY7F9"], span[class*="e4rVHe"]');
        const texts = [];
        card.querySelectorAll('div[class*="W4Efsd"] span, div[class*="W4Efsd"]').forEach(s => {
            const t = (s.textContent || '').trim();
            if (t) texts.push(t);
        });
        cards.push({
            href: link ? link.getAttribute('href') || '' : '',
            aria_label: link ? link.getAttribute('aria-label') || '' : '',
            name_text: nameEl ? (nameEl.textContent || '').trim() : '',
            rating_label: ratingEl ? ratingEl.getAttribute('aria-label') || '' : '',
            review_count_text: countEl ? (countEl.textContent || '').trim() : '',
            texts,
            full_text: card.textContent || '',
        });
    });
    return cards;
}
"""

RESTAURANT_INFO_JS = """
() => {
    const firstText = selectors => {
        for (const sel of selectors) {
            const el = document.querySelector(sel);
            if (el && el.textContent && el.textContent.trim()) return el.textContent.trim();
        }
        return '';
    };
    const website = document.querySelector('a[data-item-id="authority"]');
    const priceEl = document.querySelector('span[aria-label*="Fiyat"], span[aria-label*="price"], span[aria-label*="Price"]');
    return {
        name: firstText(['h1[class*="DUwDvf"]', 'h1[class*="fontHeadlineLarge"]', 'div[role="main"] h1']),
        address: firstText(['button[data-item-id="address"]', 'button[aria-label*="Adres"]', 'div[data-item-id="address"]']),
        phone: firstText(['button[data-item-id*="phone"]', 'button[aria-label*="Telefon"]', 'a[data-item-id*="phone"]']),
        website: website ? website.getAttribute('href') || '' : '',
        rating_text: firstText(['div[class*="F7nice"] span[aria-hidden="true"]']),
        review_count_text: firstText(['button[class*="HHrUdb"]', 'div[class*="F7nice"] span[aria-label]']),
        price_text: priceEl ? (priceEl.textContent || '') : '',
        url: window.location.href,
    };
}
"""

# --------------------------------------------------------------------------
# URL builders
# --------------------------------------------------------------------------


def radius_to_zoom(radius_km: float) -> int:
    if radius_km <= 1:
        return 15
    if radius_km <= 2:
        return 14
    if radius_km <= 3:
        return 13
    if radius_km <= 5:
        return 12
    return 11


def build_search_url(location_text: str, query: str, lat: float, lon: float, radius_km: float) -> str:
    """Search page URL with the 4+ star filter applied."""
    text = f"{location_text} {query}".strip()
    return f"{MAPS_BASE_URL}/search/{quote(text)}/@{lat},{lon},{radius_to_zoom(radius_km)}z/{STAR_FILTER_DATA}"


def build_reviews_url(maps_url: Optional[str], place_id: Optional[str]) -> str:
    if place_id and place_id.startswith("ChIJ"):
        return f"{MAPS_BASE_URL}/place/?q=place_id:{place_id}"
    if not maps_url:
        raise ValueError("Either a ChIJ place id or a maps URL is required")
    if "!1b1" in maps_url:
        return maps_url
    if "/place/" in maps_url and "/data=" in maps_url:
        return maps_url.replace("/data=", "/data=!3m1!1b1!", 1)
    return maps_url


# --------------------------------------------------------------------------
# Parsers
# --------------------------------------------------------------------------


def parse_number(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", "."))
    except (AttributeError, ValueError):
        return None


def parse_count(text: str) -> Optional[int]:
    """'(1.234)' -> 1234."""
    if not text:
        return None
    match = REVIEW_COUNT_RE.search(text)
    if not match:
        return None
    digits = re.sub(r"[.,]", "", match.group(1))
    return int(digits) if digits.isdigit() else None


def parse_rating_label(label: str) -> Optional[float]:
    match = RATING_LABEL_RE.search(label or "")
    if not match:
        return None
    return parse_number(match.group(1))


def parse_price_level(text: str) -> Optional[int]:
    runs = [len(m.group(1)) for m in PRICE_LEVEL_RE.finditer(text or "")]
    return max(runs) if runs else None


def parse_coordinates(url: str) -> tuple[Optional[float], Optional[float]]:
    for pattern in (COORDS_DATA_RE, COORDS_AT_RE):
        match = pattern.search(url or "")
        if match:
            return parse_number(match.group(1)), parse_number(match.group(2))
    return None, None


def parse_place_id(url: str) -> Optional[str]:
    match = PLACE_ID_RE.search(url or "")
    if not match:
        return None
    return match.group(1) or match.group(2)


def is_sponsored(text: str) -> bool:
    return any(marker in (text or "") for marker in SPONSORED_MARKERS)


def looks_like_address(text: str) -> bool:
    if not 10 <= len(text) <= 200:
        return False
    if any(marker in text for marker in ADDRESS_EXCLUDES):
        return False
    return any(marker in text for marker in ADDRESS_MARKERS)


def find_keyword_matches(text: str, keyword: str) -> list[str]:
    """Keyword words and known inflected forms that occur in the review text."""
    lower_text = turkish_lower(text)
    lower_keyword = turkish_lower(keyword)
    matches: list[str] = []
    for word in lower_keyword.split():
        if word in lower_text and word not in matches:
            matches.append(word)
    for base, variants in KEYWORD_VARIATIONS.items():
        if base not in lower_keyword:
            continue
        for variant in variants:
            if variant in lower_text and variant not in matches:
                matches.append(variant)
    return matches


def parse_review_card(raw: dict[str, Any], keyword: str = "") -> Optional[ScrapedReviewData]:
    """Build a review from a raw card snapshot; None when the card is unusable."""
    if raw.get("star_markers", 1) != 1:
        return None

    rating = parse_rating_label(raw.get("star_label", "")) or 0
    if not rating and raw.get("filled_stars"):
        rating = float(raw["filled_stars"])

    author = (raw.get("author") or "").strip()
    if not author or len(author) >= 100:
        author = "Anonim"

    text = ""
    for block in raw.get("blocks", []):
        block = block.strip()
        if block == author or (RATING_LABEL_RE.search(block) and len(block) < 40):
            continue
        if len(block) < 50 and (RELATIVE_TIME_RE.search(block) or PROFILE_LINE_RE.search(block)):
            continue
        if len(block) > len(text):
            text = block
    text = TRAILING_MORE_RE.sub("", text).strip()
    if author != "Anonim" and text.startswith(author):
        text = text[len(author):].strip()
    if len(text) <= 10:
        return None

    relative_time = None
    for span in raw.get("spans", []):
        if RELATIVE_TIME_RE.search(span) and not RATING_LABEL_RE.search(span):
            relative_time = span
            break

    price_match = PRICE_PER_PERSON_RE.search(raw.get("full_text", ""))
    return ScrapedReviewData(
        author_name=author,
        rating=rating,
        text=text,
        relative_time=relative_time,
        price_per_person=price_match.group(1) if price_match else None,
        matched_keywords=find_keyword_matches(text, keyword) if keyword else [],
    )


def parse_listing_card(raw: dict[str, Any]) -> Optional[SearchListing]:
    name = (raw.get("name_text") or raw.get("aria_label") or "").strip()
    if not name:
        return None
    href = raw.get("href") or ""
    latitude, longitude = parse_coordinates(href)

    rating = parse_rating_label(raw.get("rating_label", ""))
    review_count = parse_count(raw.get("review_count_text", ""))

    address = None
    for text in raw.get("texts", []):
        for segment in text.split("·"):
            segment = segment.strip()
            if looks_like_address(segment):
                address = segment
                break
        if address:
            break

    full_text = raw.get("full_text", "")
    return SearchListing(
        name=name,
        place_id=parse_place_id(href),
        rating=rating,
        review_count=review_count,
        address=address,
        latitude=latitude,
        longitude=longitude,
        price_level=parse_price_level(full_text),
        maps_url=href or None,
        is_sponsored=is_sponsored(full_text),
    )


def parse_restaurant_info(raw: dict[str, Any], place_id: str) -> RestaurantFacts:
    url = raw.get("url") or ""
    latitude, longitude = parse_coordinates(url)
    rating_text = (raw.get("rating_text") or "").strip()
    count_text = raw.get("review_count_text") or ""
    digits = re.search(r"(\d[\d.,]*)", count_text)
    return RestaurantFacts(
        place_id=place_id,
        name=(raw.get("name") or "").strip(),
        formatted_address=(raw.get("address") or "").strip() or None,
        latitude=latitude,
        longitude=longitude,
        rating=parse_number(rating_text) if rating_text else None,
        total_reviews=int(re.sub(r"[.,]", "", digits.group(1))) if digits else None,
        price_level=parse_price_level(raw.get("price_text", "")),
        phone=(raw.get("phone") or "").strip() or None,
        website=raw.get("website") or None,
        maps_url=url or None,
    )
