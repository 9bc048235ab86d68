from typing import Any, Dict, Optional

from shared.db import PromptConfiguration, dump_json, load_json

TEXT_FIELDS = ("business_name", "details", "system_instructions")
FLAG_FIELDS = ("web_search_enabled", "file_search_enabled", "weather_api_enabled", "time_api_enabled")
LIST_FIELDS = ("custom_tools", "keywords", "nlp_intents", "file_references")
VALID_TRIGGER_MODES = ("keyword", "nlp")


def get_active_config(db) -> PromptConfiguration | None:
    return (
        db.query(PromptConfiguration)
        .filter(PromptConfiguration.is_active.is_(True))
        .order_by(PromptConfiguration.id.desc())
        .first()
    )


def config_to_dict(record: PromptConfiguration | None) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    data: Dict[str, Any] = {
        "id": record.id,
        "trigger_mode": record.trigger_mode,
        "is_active": bool(record.is_active),
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }
    for name in TEXT_FIELDS:
        data[name] = getattr(record, name)
    for name in FLAG_FIELDS:
        data[name] = bool(getattr(record, name))
    for name in LIST_FIELDS:
        data[name] = load_json(getattr(record, name), [])
    return data


def get_active_config_dict(db) -> Optional[Dict[str, Any]]:
    return config_to_dict(get_active_config(db))


def save_config(db, payload: Dict[str, Any]) -> PromptConfiguration:
    """
    Deactivate every active configuration and insert payload as the new active one.
    Runs inside the caller's transaction; the caller commits.
    """
    for row in db.query(PromptConfiguration).filter(PromptConfiguration.is_active.is_(True)).all():
        row.is_active = False
    db.flush()

    mode = payload.get("trigger_mode")
    record = PromptConfiguration(
        trigger_mode=mode if mode in VALID_TRIGGER_MODES else "keyword",
        is_active=True,
    )
    for name in TEXT_FIELDS:
        setattr(record, name, payload.get(name))
    for name in FLAG_FIELDS:
        setattr(record, name, bool(payload.get(name)))
    for name in LIST_FIELDS:
        value = payload.get(name)
        setattr(record, name, dump_json(value if isinstance(value, list) else []))
    db.add(record)
    db.flush()
    return record


def trigger_config_from(config: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "mode": config.get("trigger_mode"),
        "keywords": config.get("keywords") or [],
        "nlpIntents": config.get("nlp_intents") or [],
    }
