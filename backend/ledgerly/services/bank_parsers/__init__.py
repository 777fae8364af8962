"""Bank statement parsers and parser resolution.

``parser_for(template)`` picks the parser class for a bank template:
an explicit ``parser_class`` on the template first, then the parser
registered for ``"{bank_code}_{account_type}"``, then the one registered
for the bank code alone, then :class:`GenericParser`.
"""

from __future__ import annotations

import logging
from typing import Dict, Type

from .axis import AxisParser
from .base import BaseParser
from .generic import GenericParser
from .hdfc import HdfcParser
from .icici import IciciCreditCardParser, IciciCurrentParser, IciciSavingsParser
from .sbi import SbiParser

logger = logging.getLogger(__name__)

PARSERS: Dict[str, Type[BaseParser]] = {
    "generic": GenericParser,
    "hdfc": HdfcParser,
    "sbi": SbiParser,
    "axis": AxisParser,
    "icici": IciciSavingsParser,
    "icici_savings": IciciSavingsParser,
    "icici_salary": IciciSavingsParser,
    "icici_current": IciciCurrentParser,
    "icici_credit_card": IciciCreditCardParser,
}

_BY_CLASS_NAME = {cls.__name__.lower(): cls for cls in PARSERS.values()}


def parser_for(template) -> Type[BaseParser]:
    if template is None:
        return GenericParser
    name = (getattr(template, "parser_class", None) or (template.parser_config or {}).get("parser_class") or "")
    name = name.strip().lower()
    if name:
        cls = PARSERS.get(name) or _BY_CLASS_NAME.get(name.rsplit(".", 1)[-1])
        if cls:
            return cls
        logger.warning("Parser class %r not found, falling back to GenericParser", name)
        return GenericParser
    bank_code = (template.bank_code or "").lower()
    account_type = (getattr(template, "account_type", None) or "").lower()
    return PARSERS.get(f"{bank_code}_{account_type}") or PARSERS.get(bank_code, GenericParser)


__all__ = [
    "AxisParser",
    "BaseParser",
    "GenericParser",
    "HdfcParser",
    "IciciCreditCardParser",
    "IciciCurrentParser",
    "IciciSavingsParser",
    "SbiParser",
    "PARSERS",
    "parser_for",
]
