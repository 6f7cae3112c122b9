"""Domain XML rendering from placeholder templates."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional
from xml.etree.ElementTree import ParseError, fromstring
from xml.sax.saxutils import escape

from vmfleet.constants import DEFAULT_TEMPLATE_PATH, PLACEHOLDER_RE, REQUIRED_PLACEHOLDERS
from vmfleet.exceptions import TemplateValidationError
from vmfleet.models import TemplateDescriptor, VmDescriptor

# Substituted when present, never required.
OPTIONAL_PLACEHOLDERS = {
    "network": "NETWORK_PLACEHOLDER",
}


@dataclass(frozen=True)
class DomainTemplateValues:
    """Every value a node template needs, as typed fields.

    Field names match the template keys, so a value object can never be
    missing one of the required substitutions.
    """

    hostname: str
    uuid: str
    memory: int  # KiB
    vcpu: int
    diskPath: str
    seedPath: str
    macAddress: str
    network: str

    @classmethod
    def from_descriptor(cls, descriptor: VmDescriptor, network: str) -> "DomainTemplateValues":
        return cls(
            hostname=descriptor.name,
            uuid=descriptor.uuid,
            memory=descriptor.memory_mib * 1024,
            vcpu=descriptor.vcpu_count,
            diskPath=str(descriptor.disk_image_path),
            seedPath=str(descriptor.seed_media_path),
            macAddress=descriptor.mac_address,
            network=network,
        )

    def as_mapping(self) -> Dict[str, str]:
        return {key: str(value) for key, value in asdict(self).items()}


def validate_template(template: TemplateDescriptor) -> None:
    """Fail unless every required placeholder occurs in the template."""
    missing = [token for token in REQUIRED_PLACEHOLDERS.values() if token not in template.text]
    if missing:
        origin = f" {template.source}" if template.source else ""
        raise TemplateValidationError(
            f"Template{origin} is missing required placeholders: {', '.join(missing)}"
        )


def load_template(path: Optional[Path] = None) -> TemplateDescriptor:
    path = path or DEFAULT_TEMPLATE_PATH
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateValidationError(f"Cannot read template {path}: {exc}") from exc
    template = TemplateDescriptor(text=text, source=path)
    validate_template(template)
    return template


def render_template(template: TemplateDescriptor, values: Mapping[str, object]) -> str:
    """Substitute values into a template and verify nothing was left behind."""
    validate_template(template)
    missing_keys = sorted(key for key in REQUIRED_PLACEHOLDERS if key not in values)
    if missing_keys:
        raise TemplateValidationError(f"No value supplied for: {', '.join(missing_keys)}")

    rendered = template.text
    tokens = dict(REQUIRED_PLACEHOLDERS)
    tokens.update(OPTIONAL_PLACEHOLDERS)
    for key, token in tokens.items():
        if key in values:
            rendered = rendered.replace(token, escape(str(values[key]), {'"': "&quot;"}))

    leftover = sorted(set(PLACEHOLDER_RE.findall(rendered)))
    if leftover:
        raise TemplateValidationError(f"Unresolved placeholders after rendering: {', '.join(leftover)}")

    try:
        fromstring(rendered)
    except ParseError as exc:
        raise TemplateValidationError(f"Rendered domain definition is not valid XML: {exc}") from exc
    return rendered


def render_domain(template: TemplateDescriptor, descriptor: VmDescriptor, network: str) -> str:
    return render_template(template, DomainTemplateValues.from_descriptor(descriptor, network).as_mapping())
