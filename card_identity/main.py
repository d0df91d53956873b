# card_identity/main.py
from __future__ import annotations

import json
from typing import Any, Dict

import hydra
from omegaconf import DictConfig

from card_identity.config.schema import AppConfig
from card_identity.core.logging import JSONLogger
from card_identity.errors import ValidationError
from card_identity.services.card_identity_service import CardIdentityService
from card_identity.services.factories import build_card_identity_service

ACTIONS = ("set", "get", "list", "delete", "history", "health")


def execute_action(service: CardIdentityService, cfg: Any) -> Dict[str, Any]:
    """
    Run one CLI action against the service and return a JSON-safe result.

    `cfg` needs `action` plus the fields that action uses:
      set: owner_type, owner_id, flag, value
      get: owner_type, owner_id, flag
      list/history: owner_type, owner_id (history takes an optional flag)
      delete: id
    """
    action = cfg.get("action")
    if action == "set":
        record = service.set_card(cfg.get("owner_type"), cfg.get("owner_id"), cfg.get("flag"), cfg.get("value"))
        return {"action": action, "card": record.to_resource()}
    if action == "get":
        record = service.get_card(cfg.get("owner_type"), cfg.get("owner_id"), cfg.get("flag"))
        return {"action": action, "card": record.to_resource() if record else None}
    if action == "list":
        records = service.list_cards(cfg.get("owner_type"), cfg.get("owner_id"))
        return {"action": action, "cards": [r.to_resource() for r in records]}
    if action == "history":
        records = service.card_history(cfg.get("owner_type"), cfg.get("owner_id"), cfg.get("flag"))
        return {"action": action, "cards": [r.to_dict() for r in records]}
    if action == "delete":
        record_id = cfg.get("id")
        if record_id is None or not str(record_id).strip():
            raise ValidationError("id is required for delete", field="id")
        service.delete_card(str(record_id))
        return {"action": action, "id": str(record_id), "deleted": True}
    if action == "health":
        return {"action": action, "health": service.health_check()}
    raise ValueError(f"Unknown action {action!r}; expected one of {', '.join(ACTIONS)}")


@hydra.main(config_path="../config", config_name="config", version_base=None)
def run(cfg: DictConfig) -> None:
    app_cfg = AppConfig.from_any(cfg)
    log = JSONLogger(
        log_path=app_cfg.logging.log_path,
        level=app_cfg.logging.level,
        enable_console=app_cfg.logging.enable_console,
        enable_jsonl=app_cfg.logging.enable_jsonl,
    )
    service = build_card_identity_service(app_cfg, logger=log)
    try:
        result = execute_action(service, cfg)
    finally:
        service.shutdown()
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


if __name__ == "__main__":
    run()
