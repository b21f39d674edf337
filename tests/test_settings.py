"""Tests for settings loading."""

from devisly.infra.settings import Settings, get_settings, set_settings


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.openai_model == "gpt-4o"
        assert settings.unipile_timeout == 30
        assert settings.context_messages == 15
        assert settings.context_hours == 2
        assert settings.app_role == "public"
        assert settings.tasks_backend == "inline"
        assert settings.gcp_location == "europe-west1"
        assert settings.gcp_tasks_queue == "devisly-messages"
        assert settings.task_max_attempts == 3
        assert settings.web_link_expiration_minutes == 30
        assert settings.webhook_strict_account is False

    def test_values_read(self):
        settings = Settings.from_env(
            {
                "OPENAI_API_KEY": "sk-test",
                "OPENAI_BASE_URL": "https://llm.internal/v1/",
                "UNIPILE_DSN": "api8.unipile.com:13851",
                "UNIPILE_ACCOUNT_ID": "acc_1",
                "WEBHOOK_STRICT_ACCOUNT": "yes",
                "CONVERSATION_CONTEXT_MESSAGES": "20",
                "APP_ROLE": "worker",
                "TASKS_BACKEND": "cloud_tasks",
                "APP_BASE_URL": "https://app.devisly.fr/",
            }
        )

        assert settings.openai_api_key == "sk-test"
        assert settings.openai_base_url == "https://llm.internal/v1"
        assert settings.unipile_dsn == "api8.unipile.com:13851"
        assert settings.webhook_strict_account is True
        assert settings.context_messages == 20
        assert settings.app_role == "worker"
        assert settings.tasks_backend == "cloud_tasks"
        assert settings.app_base_url == "https://app.devisly.fr"

    def test_bad_integer_uses_default(self):
        assert Settings.from_env({"UNIPILE_TIMEOUT": "soon"}).unipile_timeout == 30

    def test_gcp_project_fallback(self):
        assert Settings.from_env({"GCP_PROJECT_ID": "devisly-prod"}).gcp_project == "devisly-prod"
        env = {"GOOGLE_CLOUD_PROJECT": "main", "GCP_PROJECT_ID": "other"}
        assert Settings.from_env(env).gcp_project == "main"


def test_set_settings_overrides_process_settings():
    custom = Settings(openai_model="gpt-4o-mini")
    set_settings(custom)
    assert get_settings() is custom
