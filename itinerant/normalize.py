"""Turn raw model output into a displayable itinerary document.

``normalize`` is pure: it performs no I/O and returns equal documents for
equal inputs. Malformed output degrades to defaults instead of raising.
"""

from __future__ import annotations

import json
import re
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import MIN_TRAVEL_TIPS
from .models import DayPlan, Document, MapPoint, TravelTip, TripParameters

_DAY_KEYS = ("dailyPlans", "dailyItinerary", "days", "daily_plans", "daily_itinerary")
_INTRO_KEYS = ("intro", "daySummary", "summary", "overview", "introduction")
_TIP_KEYS = ("travelTips", "travel_tips", "tips")
_TAKEAWAY_KEYS = ("keyTakeaways", "key_takeaways", "highlights")
_MAP_KEYS = ("mapPoints", "map_points", "locations")
_FENCED_JSON = re.compile(r"```json([\s\S]*?)```", re.IGNORECASE)
_FENCED_ANY = re.compile(r"```([\s\S]*?)```")


def normalize(raw_output: Optional[str], parameters: TripParameters) -> Document:
    """Build a :class:`Document` from raw generation output.

    Args:
        raw_output: Text returned by the generation backend, possibly
            wrapping a JSON document in prose or code fences.
        parameters: The trip request; determines the number of days.

    Raises:
        TypeError: ``parameters`` is ``None``.
    """
    if parameters is None:
        raise TypeError("parameters must not be None")

    payload, parse_error = parse_payload(raw_output)
    itinerary = payload.get("itinerary") if isinstance(payload.get("itinerary"), dict) else payload

    destination = parameters.destination
    total = parameters.duration_days

    generated = [
        day
        for index, entry in enumerate(_first_list(itinerary, _DAY_KEYS))
        if (day := _coerce_day(entry, index + 1, destination)) is not None
    ]
    truncated = max(0, len(generated) - total)
    days = generated[:total]
    padded = total - len(days)
    while len(days) < total:
        days.append(_stub_day(len(days) + 1, destination))
    days = _renumber(days, parameters)

    intro = _first_text(itinerary, _INTRO_KEYS) or _placeholder_intro(parameters)
    title = _text(itinerary.get("title")) or (
        _text(parameters.trip_nickname) or f"{total} days in {destination}"
    )

    return Document(
        title=title,
        destination=destination,
        intro=intro,
        duration_days=total,
        days=days,
        travel_tips=normalize_tips(
            _first_value(itinerary, _TIP_KEYS), build_fallback_tips(parameters)
        ),
        key_takeaways=_strings(_first_value(itinerary, _TAKEAWAY_KEYS)),
        map_points=_map_points(itinerary, days, destination),
        generated_days=len(generated),
        padded_days=padded,
        truncated_days=truncated,
        parse_error=parse_error,
    )


# ----------------------------------------------------------------------
# Parsing
def extract_json_block(raw: str) -> str:
    """Return the JSON text embedded in ``raw``.

    Raises:
        ValueError: No JSON object or array can be located.
    """
    if not raw or not raw.strip():
        raise ValueError("generation output was empty")

    match = _FENCED_JSON.search(raw) or _FENCED_ANY.search(raw)
    candidate = match.group(1) if match else raw

    starts = [i for i in (candidate.find("{"), candidate.find("[")) if i >= 0]
    ends = [i for i in (candidate.rfind("}"), candidate.rfind("]")) if i >= 0]
    if not starts or not ends or max(ends) < min(starts):
        raise ValueError("unable to locate JSON payload in generation output")
    return candidate[min(starts) : max(ends) + 1].strip()


def parse_payload(raw_output: Optional[str]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Parse raw output into a dict, returning ``(payload, parse_error)``."""
    try:
        data = json.loads(extract_json_block(raw_output or ""))
    except (ValueError, RecursionError) as exc:
        return {}, str(exc)
    if isinstance(data, list):
        # A bare list is read as the list of days.
        return {"days": data}, None
    if not isinstance(data, dict):
        return {}, "generation output is not a JSON object"
    return data, None


# ----------------------------------------------------------------------
# Days
def _coerce_day(entry: Any, position: int, destination: str) -> Optional[DayPlan]:
    if isinstance(entry, str):
        summary = _text(entry)
        if not summary:
            return None
        return DayPlan(
            day=position,
            title=f"Day {position}",
            summary=summary,
            location=destination,
        )
    if not isinstance(entry, dict):
        return None

    location = _text(entry.get("location")) or _text(entry.get("city")) or destination
    title = _text(entry.get("title")) or _text(entry.get("theme")) or f"Day {position}"
    morning = _segment(entry.get("morning"))
    afternoon = _segment(entry.get("afternoon"))
    evening = _segment(entry.get("evening"))
    if not (morning or afternoon or evening):
        morning = _strings(entry.get("activities"))
    summary = (
        _text(entry.get("summary"))
        or _text(entry.get("description"))
        or "; ".join(morning + afternoon + evening)
        or f"Explore {location}."
    )
    latitude, longitude = _coordinates(entry)
    return DayPlan(
        day=position,
        date=_text(entry.get("date")),
        title=title,
        summary=summary,
        location=location,
        morning=morning,
        afternoon=afternoon,
        evening=evening,
        dining=_strings(entry.get("dining")),
        logistics=_strings(entry.get("logistics")),
        highlight=_text(entry.get("signatureHighlight")) or _text(entry.get("highlight")),
        latitude=latitude,
        longitude=longitude,
    )


def _segment(value: Any) -> List[str]:
    if isinstance(value, dict):
        return _strings(value.get("activities"))
    return _strings(value)


def _stub_day(position: int, destination: str) -> DayPlan:
    return DayPlan(
        day=position,
        title=f"Day {position}: Open exploration",
        summary=f"Unscheduled time in {destination}. Explore at your own pace.",
        location=destination,
        low_confidence=True,
    )


def _renumber(days: List[DayPlan], parameters: TripParameters) -> List[DayPlan]:
    renumbered = []
    for index, day in enumerate(days):
        update: Dict[str, Any] = {"day": index + 1}
        if parameters.has_fixed_dates:
            update["date"] = (parameters.depart_date + timedelta(days=index)).isoformat()
        elif parameters.flexible_dates:
            update["date"] = None
        renumbered.append(day.model_copy(update=update))
    return renumbered


# ----------------------------------------------------------------------
# Tips
def normalize_tips(tips: Any, fallback: List[TravelTip]) -> List[TravelTip]:
    """Accept strings or ``{title, description}``-like objects; else ``fallback``."""
    if not isinstance(tips, list):
        return fallback

    normalized = []
    for index, tip in enumerate(tips):
        if isinstance(tip, str):
            description = _text(tip)
            title = f"Trip tip {index + 1}"
        elif isinstance(tip, dict):
            title = _text(tip.get("title")) or _text(tip.get("heading")) or f"Trip tip {index + 1}"
            description = (
                _text(tip.get("description"))
                or _text(tip.get("content"))
                or " ".join(_strings(tip.get("bullets")))
            )
        else:
            continue
        if description:
            normalized.append(TravelTip(title=title, description=description))
    return normalized or fallback


def build_fallback_tips(parameters: TripParameters) -> List[TravelTip]:
    """Synthesize travel tips from the trip request alone."""
    destination = parameters.destination
    window = (
        f"{parameters.depart_date.isoformat()} to {parameters.return_date.isoformat()}"
        if parameters.depart_date and parameters.return_date
        else f"{parameters.duration_days}-day outline"
    )
    vibes = [_keyword(v) for v in parameters.vibes]
    tips = [
        TravelTip(
            title=f"Shape each day in {destination}",
            description=_sentences(
                f"Sketch a high-level plan for your {window} so you balance must-see moments with relaxed time.",
                f"Lean into the {', '.join(vibes)} vibe when choosing activities." if vibes else None,
                f'Use "{parameters.trip_nickname}" as a north star when describing the trip.'
                if parameters.trip_nickname
                else None,
            ),
        )
    ]

    dinners = [_keyword(d) for d in parameters.dinner_choices]
    tips.append(
        TravelTip(
            title="Lock in memorable dining",
            description=_sentences(
                f"Reserve restaurants that match your {', '.join(dinners)} preferences." if dinners else None,
                "Mix local staples with a memorable splurge meal to create contrast throughout the trip.",
            ),
        )
    )

    interests = [_keyword(i) for i in parameters.interests]
    party = _sentences(
        f"Coordinate logistics for {parameters.adults} adult{'s' if parameters.adults != 1 else ''} "
        "so arrival and check-in are seamless."
        if parameters.adults
        else None,
        f"Schedule daily downtime so {'your child' if parameters.children == 1 else 'the kids'} "
        "can reset between activities."
        if parameters.children
        else None,
        f"Prioritize highlights connected to {', '.join(interests).lower()}." if interests else None,
    )
    tips.append(
        TravelTip(
            title="Design for your travel party",
            description=party
            or "Balance active experiences with rest so the whole group stays energized.",
        )
    )

    if parameters.flexible_budget:
        budget = "Use your flexible budget to contrast premium moments with approachable local finds."
    elif parameters.budget:
        budget = (
            f"Track spend against roughly {parameters.currency} {parameters.budget:,.0f} "
            "so you can flag overages early."
        )
    else:
        budget = None
    if budget:
        tips.append(TravelTip(title="Stay ahead of logistics & spend", description=budget))

    while len(tips) < MIN_TRAVEL_TIPS:
        tips.append(
            TravelTip(
                title="Keep the journey effortless",
                description="Confirm transportation and daily highlights 48 hours in advance.",
            )
        )
    return tips


# ----------------------------------------------------------------------
# Map points
def _map_points(itinerary: Dict[str, Any], days: List[DayPlan], destination: str) -> List[MapPoint]:
    provided = _first_list(itinerary, _MAP_KEYS)
    points: List[MapPoint] = []
    seen = set()

    def add(label: str, day: Optional[int], lat: Optional[float], lng: Optional[float]) -> None:
        key = label.lower()
        if key in seen:
            return
        seen.add(key)
        query = label if destination.lower() in key else f"{label}, {destination}"
        points.append(MapPoint(label=label, query=query, day=day, latitude=lat, longitude=lng))

    for entry in provided:
        if isinstance(entry, str) and _text(entry):
            add(_text(entry), None, None, None)
        elif isinstance(entry, dict):
            label = _text(entry.get("label")) or _text(entry.get("name")) or _text(entry.get("location"))
            if label:
                day = entry.get("day") if isinstance(entry.get("day"), int) else None
                add(label, day, *_coordinates(entry))
    if points:
        return points

    for day in days:
        if not day.low_confidence:
            add(day.location, day.day, day.latitude, day.longitude)
    if not points:
        add(destination, None, None, None)
    return points


def _coordinates(entry: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    coords = entry.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) == 2:
        lat, lng = _number(coords[0]), _number(coords[1])
    else:
        source = coords if isinstance(coords, dict) else entry
        lat = _number(source.get("latitude", source.get("lat")))
        lng = _number(source.get("longitude", source.get("lng", source.get("lon"))))
    if lat is None or lng is None or not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None, None
    return lat, lng


# ----------------------------------------------------------------------
# Value helpers
def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = " ".join(value.split())
    return value or None


def _strings(value: Any) -> List[str]:
    if isinstance(value, list):
        return [text for item in value if (text := _text(item))]
    text = _text(value)
    return [text] if text else []


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _first_value(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _first_list(data: Dict[str, Any], keys: Iterable[str]) -> List[Any]:
    for key in keys:
        if isinstance(data.get(key), list):
            return data[key]
    return []


def _first_text(data: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        if text := _text(data.get(key)):
            return text
    return None


def _keyword(value: str) -> str:
    return " ".join(re.sub(r"[-_]+", " ", value).split())


def _sentences(*parts: Optional[str]) -> str:
    return " ".join(part for part in parts if part)


def _placeholder_intro(parameters: TripParameters) -> str:
    travellers = parameters.adults + parameters.children
    party = f" for {travellers} traveller{'s' if travellers != 1 else ''}" if travellers else ""
    return (
        f"A {parameters.duration_days}-day itinerary for {parameters.destination}{party}. "
        "Each day balances signature sights with time to wander."
    )
