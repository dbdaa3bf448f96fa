"""Forms for the linkplanner app.

The run-start endpoint accepts a JSON body describing the SEO profile.
``StartRunForm`` validates the flat numeric limits with regular form
fields and the nested scenario, policy and HTML sections through
:func:`~linkplanner.engine.profile.profile_from_dict`.
"""

from __future__ import annotations

from typing import Any

from django import forms

from .engine.errors import ProfileError
from .engine.profile import profile_from_dict


class StringListField(forms.Field):
    """Accepts a JSON list or a comma/newline separated string."""

    def to_python(self, value: Any) -> list[str]:
        if value in self.empty_values:
            return []
        if isinstance(value, str):
            value = value.replace('\n', ',').split(',')
        if not isinstance(value, (list, tuple)):
            raise forms.ValidationError('Enter a list of values.')
        cleaned: list[str] = []
        for item in value:
            if not isinstance(item, (str, int)):
                raise forms.ValidationError('List entries must be strings.')
            text = str(item).strip()
            if text and text not in cleaned:
                cleaned.append(text)
        return cleaned


class StartRunForm(forms.Form):
    """Validate a generation request and build the run's ``SEOProfile``."""

    max_links_per_page = forms.IntegerField(
        required=False,
        min_value=1,
        max_value=10,
        help_text='Maximum accepted links per source page (default 3).',
    )
    min_word_gap = forms.IntegerField(
        required=False,
        min_value=0,
        help_text='Minimum distance in words between link insertion points (default 100).',
    )
    max_exact_anchor_percent = forms.FloatField(
        required=False,
        min_value=0,
        max_value=100,
        help_text='Share of exact-keyword anchors allowed in the run (default 20).',
    )
    stop_anchors = StringListField(required=False)
    priority_pages = StringListField(required=False)
    hub_pages = StringListField(required=False)
    scenarios = forms.JSONField(required=False)
    policies = forms.JSONField(required=False)
    html = forms.JSONField(required=False)

    def clean(self) -> dict[str, Any]:  # type: ignore[override]
        cleaned_data = super().clean()
        if self.errors:
            return cleaned_data

        payload: dict[str, Any] = {}
        for name in ('max_links_per_page', 'min_word_gap', 'max_exact_anchor_percent'):
            value = cleaned_data.get(name)
            if value is not None:
                payload[name] = value
        for name in ('stop_anchors', 'priority_pages', 'hub_pages'):
            payload[name] = cleaned_data.get(name) or []
        for name in ('scenarios', 'policies', 'html'):
            value = cleaned_data.get(name)
            if value in (None, ''):
                continue
            if not isinstance(value, dict):
                raise forms.ValidationError({name: 'Expected an object.'})
            payload[name] = value

        try:
            cleaned_data['profile'] = profile_from_dict(payload)
        except ProfileError as exc:
            raise forms.ValidationError(str(exc)) from exc
        return cleaned_data
