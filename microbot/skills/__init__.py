"""
Skills
======

Skill descriptors loaded from SKILL.md documents and the catalog that
indexes them by name.
"""

from microbot.skills.catalog import SkillCatalog, SkillDescriptor, parse_skill_document

__all__ = ["SkillCatalog", "SkillDescriptor", "parse_skill_document"]
