from relayflow.templates.registry import TEMPLATES, get_template, list_templates

__all__ = ["TEMPLATES", "get_template", "list_templates"]
