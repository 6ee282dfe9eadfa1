import json
import os
from pathlib import Path
from typing import Dict, Any

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "../../data/global_config.json")


class ConfigService:
    """
    Global configuration for the search backend.

    Holds the external index connection (Elasticsearch URL, index name,
    credentials), the candidate limits used by the retrieval selector and the
    local storage location.

    Precedence: JSON file > environment variables. A key that is missing or
    empty in ``global_config.json`` is read from its environment variable
    (e.g. ``ELASTICSEARCH_URL``).
    """
    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Loads the JSON config file from disk."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError):
                return {}
        return {}

    def get_config(self) -> Dict[str, Any]:
        return self._config

    def update_config(self, new_config: Dict[str, Any]) -> Dict[str, Any]:
        """Updates the config and persists it to disk."""
        self._config.update(new_config)
        with open(self.config_path, 'w') as f:
            json.dump(self._config, f, indent=2)
        return self._config

    def get_search_config(self) -> Dict[str, Any]:
        """
        Effective search configuration.

        Values from the ``search`` section win; empty keys fall back to the
        mapped environment variable, then to the defaults below. Numeric
        settings are coerced and clamped so callers can use them directly.
        """
        config = self._config.get("search", {}).copy()

        # Config Key -> Env Var Name, only consulted when the key is empty
        env_mapping = {
            'elasticsearch_url': 'ELASTICSEARCH_URL',
            'elasticsearch_index': 'ELASTICSEARCH_INDEX',
            'elasticsearch_username': 'ELASTICSEARCH_USERNAME',
            'elasticsearch_password': 'ELASTICSEARCH_PASSWORD',
            'elasticsearch_tls_reject_unauthorized': 'ELASTICSEARCH_TLS_REJECT_UNAUTHORIZED',
            'index_timeout': 'ELASTICSEARCH_TIMEOUT',
            'index_candidate_limit': 'INDEX_CANDIDATE_LIMIT',
            'index_usable_limit': 'INDEX_USABLE_LIMIT',
            'chat_filename_marker': 'CHAT_FILENAME_MARKER',
            'search_timeout': 'SEARCH_TIMEOUT',
            'data_dir': 'CHATSIFT_DATA_DIR',
        }

        for key, env_var in env_mapping.items():
            if not config.get(key) and os.getenv(env_var):
                config[key] = os.getenv(env_var)

        if not config.get('elasticsearch_index'):
            config['elasticsearch_index'] = 'file-extractor-files'
        if not config.get('chat_filename_marker'):
            config['chat_filename_marker'] = '_chat'

        reject = config.get('elasticsearch_tls_reject_unauthorized')
        if isinstance(reject, str):
            reject = reject.strip().lower() != 'false'
        config['elasticsearch_tls_reject_unauthorized'] = True if reject is None else bool(reject)

        config['index_timeout'] = self._coerce_number(config.get('index_timeout'), 5.0, 1.0, 60.0, float)
        config['search_timeout'] = self._coerce_number(config.get('search_timeout'), 10.0, 1.0, 120.0, float)
        config['index_candidate_limit'] = self._coerce_number(config.get('index_candidate_limit'), 20, 1, 500, int)
        config['index_usable_limit'] = self._coerce_number(config.get('index_usable_limit'), 5, 1, 100, int)
        return config

    @staticmethod
    def _coerce_number(value: Any, default, lower, upper, cast):
        if value in (None, ""):
            return default
        try:
            n = cast(value)
        except (ValueError, TypeError):
            return default
        return max(lower, min(upper, n))

    def update_search_config(self, search_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Updates the ``search`` section.

        Empty or masked passwords (``****...``) coming back from the UI are
        ignored so they never overwrite the stored secret. The section is
        replaced as a whole, never mutated in place.
        """
        updated = dict(self._config.get("search", {}))
        for k, v in search_config.items():
            if k == "elasticsearch_password":
                if v is None:
                    continue
                if isinstance(v, str):
                    masked = v.strip()
                    if masked == "" or masked.startswith("****"):
                        continue
            updated[k] = v
        self.update_config({"search": updated})
        return updated

    def get_data_dir(self) -> str:
        data_dir = self.get_search_config().get('data_dir')
        if data_dir:
            return str(data_dir)
        return os.path.abspath(os.path.join(os.path.dirname(__file__), "../../data"))


config_service = ConfigService()
