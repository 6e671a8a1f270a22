#!/usr/bin/env python3
"""
Session context and user preferences for the Ops Dashboard engine

SessionContext carries the credentials and scope (organization, project)
every backend request needs. It is handed to the client at construction, and
cleared when the backend rejects the session.

PreferenceStore keeps the two durable boolean user preferences in a small
JSON file. Nothing else is persisted across sessions.
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

RELEASE_AI_INSIGHTS_ENABLED = 'release_ai_insights_enabled'
COMPACT_LAYOUT_ENABLED = 'compact_layout_enabled'

PREFERENCE_DEFAULTS = {
    RELEASE_AI_INSIGHTS_ENABLED: False,
    COMPACT_LAYOUT_ENABLED: False,
}


class SessionContext:
    """Authentication token plus organization/project scope

    Attributes:
        token: Bearer token ('' when signed out)
        organization_id: Active organization ('' when none selected)
        project: Optional project name scoping requests
        on_sign_out: Optional callable invoked after the session is cleared
    """

    def __init__(self, token='', organization_id='', project='', on_sign_out=None):
        self.token = token or ''
        self.organization_id = organization_id or ''
        self.project = project or ''
        self.on_sign_out = on_sign_out

    @classmethod
    def from_config(cls, config, on_sign_out=None):
        return cls(
            token=config.get('api_token', ''),
            organization_id=config.get('organization_id', ''),
            project=config.get('project', ''),
            on_sign_out=on_sign_out,
        )

    @property
    def is_authenticated(self):
        return bool(self.token)

    def headers(self):
        """Request headers for the current session (only the parts that are set)"""
        headers = {}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        if self.organization_id:
            headers['X-Organization-ID'] = str(self.organization_id)
        if self.project:
            headers['X-Project-Name'] = self.project
        return headers

    def clear(self):
        """Drop credentials and scope"""
        self.token = ''
        self.organization_id = ''
        self.project = ''
        logger.info("Session cleared")

    def sign_out(self):
        """Clear the session and notify the sign-out hook (used on 401)"""
        self.clear()
        if self.on_sign_out is not None:
            self.on_sign_out()


class PreferenceStore:
    """Boolean user preferences persisted as a JSON object

    Unknown keys are rejected. A missing or unreadable file yields defaults.
    """

    def __init__(self, path):
        self.path = path
        self._values = dict(PREFERENCE_DEFAULTS)
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, 'r') as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read preferences from {self.path}: {e}. Using defaults.")
            return
        if not isinstance(stored, dict):
            logger.warning(f"Ignoring preferences file {self.path}: expected a JSON object")
            return
        for key in PREFERENCE_DEFAULTS:
            if isinstance(stored.get(key), bool):
                self._values[key] = stored[key]

    def get(self, key):
        if key not in PREFERENCE_DEFAULTS:
            raise KeyError(f"Unknown preference: {key}")
        return self._values[key]

    def set(self, key, value):
        """Set a preference and write the file

        Raises:
            KeyError: If the preference name is unknown
            OSError: If the file cannot be written
        """
        if key not in PREFERENCE_DEFAULTS:
            raise KeyError(f"Unknown preference: {key}")
        values = {**self._values, key: bool(value)}
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(values, f, indent=2)
        # Only adopt the new value once it is on disk
        self._values = values
        logger.debug(f"Preference {key} set to {values[key]}")

    def as_dict(self):
        return dict(self._values)
