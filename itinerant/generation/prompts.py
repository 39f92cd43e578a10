from __future__ import annotations

from ..models import TripParameters

_FORMAT = """Respond with JSON shaped like:
{
  "title": "...",
  "intro": "...",
  "keyTakeaways": ["..."],
  "dailyPlans": [
    {
      "day": 1, "date": "YYYY-MM-DD", "title": "...", "summary": "...",
      "location": "...", "latitude": 0.0, "longitude": 0.0,
      "morning": {"activities": ["..."]},
      "afternoon": {"activities": ["..."]},
      "evening": {"activities": ["..."]},
      "dining": ["..."], "signatureHighlight": "...", "logistics": ["..."]
    }
  ],
  "travelTips": [{"title": "...", "description": "..."}]
}"""


def build_prompt(parameters: TripParameters) -> str:
    """Render the itinerary request for the generation backend."""
    lines = [f"Destination: {parameters.destination}"]
    if parameters.has_fixed_dates and parameters.return_date:
        lines.append(
            f"Dates: {parameters.depart_date.isoformat()} to {parameters.return_date.isoformat()}"
        )
    lines.append(f"Trip length: exactly {parameters.duration_days} day(s)")
    lines.append(f"Travellers: {parameters.adults} adult(s), {parameters.children} child(ren)")
    if parameters.interests:
        lines.append(f"Interests: {', '.join(parameters.interests)}")
    if parameters.vibes:
        lines.append(f"Trip vibe: {', '.join(parameters.vibes)}")
    if parameters.dinner_choices:
        lines.append(f"Dining: {', '.join(parameters.dinner_choices)}")
    if parameters.budget:
        flexible = " (flexible)" if parameters.flexible_budget else ""
        lines.append(f"Budget: {parameters.currency} {parameters.budget:,.0f}{flexible}")
    if parameters.notes:
        lines.append(f"Notes: {parameters.notes}")
    lines.append(_FORMAT)
    return "\n\n".join(lines)
