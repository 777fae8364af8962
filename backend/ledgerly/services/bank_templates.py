"""Bank template seeding and lookup.

Templates describe how to read one bank's statement export. They are
defined in YAML (``settings.BANK_TEMPLATES_FILE``) and upserted on
startup keyed by ``(bank_code, account_type, file_format)``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.core.errors import NotFoundError
from ledgerly.models.enums import AccountType, FileFormat
from ledgerly.models.tables import BankTemplate

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = {a.value for a in AccountType}
FILE_FORMATS = {f.value for f in FileFormat}


def load_template_definitions(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Flatten the YAML file into one dict per template."""
    file_path = Path(path or settings.BANK_TEMPLATES_FILE)
    if not file_path.exists():
        logger.warning("Bank templates file not found: %s", file_path)
        return []
    with open(file_path, "r", encoding="utf-8") as fh:
        config = yaml.safe_load(fh) or {}

    templates: List[Dict[str, Any]] = []
    for bank in config.get("banks", []):
        for tpl in bank.get("templates", []):
            if tpl.get("account_type") not in ACCOUNT_TYPES or tpl.get("file_format") not in FILE_FORMATS:
                logger.warning(
                    "Skipping template %s/%s/%s: unknown account type or format",
                    bank.get("bank_code"),
                    tpl.get("account_type"),
                    tpl.get("file_format"),
                )
                continue
            templates.append(
                {
                    "bank_name": bank["bank_name"],
                    "bank_code": bank["bank_code"],
                    "logo_url": bank.get("logo"),
                    "account_type": tpl["account_type"],
                    "file_format": tpl["file_format"],
                    "parser_class": tpl.get("parser_class"),
                    "description": tpl.get("description"),
                    "display_order": tpl.get("display_order", 0),
                    "column_mappings": tpl.get("column_mappings") or {},
                    "parser_config": tpl.get("parser_config") or {},
                }
            )
    return templates


async def seed_bank_templates(db: AsyncSession, path: Optional[str] = None) -> int:
    """Create or refresh templates from YAML; returns the number written."""
    existing = {
        (t.bank_code, t.account_type, t.file_format): t
        for t in (await db.execute(select(BankTemplate))).scalars().all()
    }
    count = 0
    for attrs in load_template_definitions(path):
        key = (attrs["bank_code"], attrs["account_type"], attrs["file_format"])
        template = existing.get(key)
        if template is None:
            template = BankTemplate(**attrs, is_active=True)
            db.add(template)
            existing[key] = template
        else:
            for name, value in attrs.items():
                setattr(template, name, value)
            template.is_active = True
        count += 1
    await db.flush()
    return count


class BankTemplateService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_active(self, bank_code: Optional[str] = None) -> List[BankTemplate]:
        query = select(BankTemplate).where(BankTemplate.is_active.is_(True))
        if bank_code:
            query = query.where(BankTemplate.bank_code == bank_code)
        query = query.order_by(BankTemplate.display_order, BankTemplate.bank_name)
        return list((await self.db.execute(query)).scalars().all())

    async def get(self, template_id: int) -> BankTemplate:
        template = await self.db.get(BankTemplate, template_id)
        if template is None:
            raise NotFoundError(f"Bank template {template_id} not found")
        return template

    async def grouped_by_bank(self) -> List[Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for template in await self.list_active():
            group = groups.setdefault(
                template.bank_code,
                {"bank_code": template.bank_code, "bank_name": template.bank_name, "templates": []},
            )
            group["templates"].append(template)
        return list(groups.values())
