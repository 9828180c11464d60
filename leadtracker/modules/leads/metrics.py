from datetime import datetime

from leadtracker.models.lead import Lead


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def calculate_metrics(leads: dict[str, Lead]) -> dict:
    """Lead counts by creation day and hour of day (UTC), plus the peak hour."""
    leads_by_day: dict[str, int] = {}
    leads_by_hour = [0] * 24

    for lead in leads.values():
        created = _parse_timestamp(lead.timestamp)
        day = created.date().isoformat()
        leads_by_day[day] = leads_by_day.get(day, 0) + 1
        leads_by_hour[created.hour] += 1

    return {
        "totalLeads": len(leads),
        "leadsByDay": leads_by_day,
        "leadsByHour": leads_by_hour,
        "peakHour": leads_by_hour.index(max(leads_by_hour)),
    }
