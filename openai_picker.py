import json
import logging

from openai import OpenAI, OpenAIError


logger = logging.getLogger(__name__)

MODEL_NAME = "gpt-4.1-mini"
MAX_REASON_LENGTH = 140


def write_reasons(shortlist, aggregated, openai_api_key):
    """
    Return the shortlist with AI-written match reasons.

    Falls back to the existing template reasons if the call fails or the
    response does not validate.
    """
    if not shortlist or not openai_api_key:
        return shortlist

    try:
        raw_text = _call_openai(shortlist, aggregated, openai_api_key)
        reasons = _validate_response(raw_text, shortlist)
    except (OpenAIError, ValueError) as exc:
        logger.warning("Keeping template reasons: %s", exc)
        return shortlist

    rewritten = []
    for item in shortlist:
        updated = dict(item)
        updated["match_reason"] = reasons[item["id"]]
        rewritten.append(updated)
    return rewritten


def _call_openai(shortlist, aggregated, openai_api_key):
    client = OpenAI(api_key=openai_api_key)

    system_message = (
        "You explain to a group of friends why a title suits their shared mood.\n"
        "You receive the group's combined preferences and a ranked list of titles.\n"
        "Return ONLY valid JSON with this shape:\n"
        '{ "reasons": { "<id>": "<=140 chars>", ... } }\n'
        "Rules:\n"
        "- reasons must include a reason for every given id and no other ids.\n"
        "- Each reason must be ONE sentence and <= 140 characters.\n"
        "- Do not include any extra keys."
    )

    user_message = {
        "group": {
            "moods": sorted(aggregated["moods"]),
            "energies": sorted(aggregated["energies"]),
            "runtimes": sorted(aggregated.get("runtimes") or []),
        },
        "titles": [
            {
                "id": item["id"],
                "title": item["title"],
                "year": (item.get("release_date") or "")[:4],
                "content_type": item["content_type"],
                "genres": [genre["name"] for genre in item.get("genres", [])],
                "overview": (item.get("overview") or "")[:240],
                "match_score": item["match_score"],
            }
            for item in shortlist
        ],
    }

    response = client.responses.create(
        model=MODEL_NAME,
        input=[
            {"role": "system", "content": system_message},
            {"role": "user", "content": json.dumps(user_message, ensure_ascii=False)},
        ],
        text={"format": {"type": "json_object"}},
    )

    return response.output_text


def _validate_response(raw_text, shortlist):
    payload = json.loads(raw_text)
    if not isinstance(payload, dict):
        raise ValueError("response must be a JSON object")

    reasons_obj = payload.get("reasons", {})
    if not isinstance(reasons_obj, dict):
        raise ValueError("reasons must be an object/dict")

    normalized = {}
    for item in shortlist:
        reason = reasons_obj.get(item["id"])
        if not reason or not isinstance(reason, str):
            raise ValueError(f"Reason missing for {item['id']}")
        reason = reason.strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise ValueError("Reason too long")
        normalized[item["id"]] = reason

    return normalized
