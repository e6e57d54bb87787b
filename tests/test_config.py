# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for brainrun configuration."""

import json

from brainrun.config import BrainrunConfig, MongoDBConfig, RuntimeConfig, load_config

_MONGO_VARS = (
    "BRAINRUN_MONGODB_URL",
    "BRAINRUN_MONGODB_USERNAME",
    "BRAINRUN_MONGODB_PASSWORD",
    "BRAINRUN_MONGODB_AUTH_SOURCE",
    "BRAINRUN_MONGODB_DATABASE",
)


class TestRuntimeConfig:
    """Tests for RuntimeConfig."""

    def test_defaults(self):
        cfg = RuntimeConfig()
        assert cfg.max_retries == 1
        assert cfg.retry_delay == 0.0
        assert cfg.max_iterations == 100
        assert cfg.agent_system_prompt.startswith("## Headless Agent")

    def test_from_dict_camel_case(self):
        data = {"maxRetries": 3, "maxIterations": "7", "origin": "https://x"}
        cfg = RuntimeConfig.from_dict(data)
        assert cfg.max_retries == 3
        assert cfg.max_iterations == 7
        assert cfg.origin == "https://x"

    def test_from_dict_snake_case(self):
        cfg = RuntimeConfig.from_dict({"retry_delay": 0.5})
        assert cfg.retry_delay == 0.5
        assert cfg.max_retries == 1

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BRAINRUN_MAX_RETRIES", "4")
        monkeypatch.setenv("BRAINRUN_ORIGIN", "https://brains.example")
        cfg = RuntimeConfig.from_env()
        assert cfg.max_retries == 4
        assert cfg.origin == "https://brains.example"


class TestMongoDBConfig:
    """Tests for MongoDBConfig."""

    def test_defaults(self):
        cfg = MongoDBConfig()
        assert cfg.url == "mongodb://localhost:27017"
        assert cfg.username == ""
        assert cfg.auth_source == "admin"
        assert cfg.database == "brainrun"

    def test_connection_string_without_credentials(self):
        cfg = MongoDBConfig()
        assert cfg.connection_string() == cfg.url

    def test_connection_string_with_credentials(self):
        cfg = MongoDBConfig(username="u", password="p", auth_source="users")
        assert cfg.connection_string() == "mongodb://u:p@localhost:27017/?authSource=users"

    def test_connection_string_escapes_special_characters(self):
        cfg = MongoDBConfig(url="mongodb://h:1/", username="u", password="p@ss:w/rd")
        assert cfg.connection_string() == "mongodb://u:p%40ss%3Aw%2Frd@h:1/?authSource=admin"

    def test_connection_string_extends_existing_options(self):
        cfg = MongoDBConfig(url="mongodb://h:1/db?tls=true", username="a b", password="p")
        assert cfg.connection_string() == "mongodb://a+b:p@h:1/db?tls=true&authSource=admin"

    def test_connection_string_keeps_embedded_credentials(self):
        cfg = MongoDBConfig(url="mongodb://a:b@host:1", username="u", password="p")
        assert cfg.connection_string() == "mongodb://a:b@host:1"

    def test_to_dict(self):
        assert MongoDBConfig().to_dict() == {
            "url": "mongodb://localhost:27017",
            "username": "",
            "password": "",
            "auth_source": "admin",
            "database": "brainrun",
        }

    def test_from_dict_camel_case_auth_source(self):
        cfg = MongoDBConfig.from_dict({"authSource": "other_db"})
        assert cfg.auth_source == "other_db"

    def test_from_dict_partial(self):
        cfg = MongoDBConfig.from_dict({"username": "custom"})
        assert cfg.username == "custom"
        assert cfg.url == MongoDBConfig.url

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BRAINRUN_MONGODB_URL", "mongodb://envhost:9999")
        monkeypatch.setenv("BRAINRUN_MONGODB_DATABASE", "envdbname")
        cfg = MongoDBConfig.from_env()
        assert cfg.url == "mongodb://envhost:9999"
        assert cfg.database == "envdbname"

    def test_from_env_defaults(self, monkeypatch):
        for name in _MONGO_VARS:
            monkeypatch.delenv(name, raising=False)
        cfg = MongoDBConfig.from_env()
        assert cfg.url == MongoDBConfig.url
        assert cfg.database == "brainrun"


class TestBrainrunConfig:
    """Tests for BrainrunConfig."""

    def test_defaults(self):
        cfg = BrainrunConfig()
        assert isinstance(cfg.runtime, RuntimeConfig)
        assert isinstance(cfg.mongodb, MongoDBConfig)

    def test_round_trip(self):
        cfg = BrainrunConfig.from_dict({"runtime": {"maxRetries": 2}})
        assert BrainrunConfig.from_dict(cfg.to_dict()) == cfg

    def test_from_dict_empty(self):
        cfg = BrainrunConfig.from_dict({})
        assert cfg.mongodb.url == MongoDBConfig.url
        assert cfg.runtime.max_retries == 1


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_explicit_path(self, tmp_path):
        config_file = tmp_path / "test.json"
        config_file.write_text(
            json.dumps(
                {
                    "runtime": {"maxIterations": 5},
                    "mongodb": {"url": "mongodb://filehost:5555", "authSource": "filedb"},
                }
            )
        )
        cfg = load_config(str(config_file))
        assert cfg.runtime.max_iterations == 5
        assert cfg.mongodb.url == "mongodb://filehost:5555"
        assert cfg.mongodb.auth_source == "filedb"

    def test_load_defaults_when_no_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("BRAINRUN_CONFIG", raising=False)
        for name in _MONGO_VARS:
            monkeypatch.delenv(name, raising=False)
        cfg = load_config()
        assert cfg.mongodb.url == MongoDBConfig.url

    def test_load_from_env_variable_path(self, tmp_path, monkeypatch):
        config_file = tmp_path / "env.json"
        config_file.write_text(json.dumps({"mongodb": {"url": "mongodb://envpath:7777"}}))
        monkeypatch.setenv("BRAINRUN_CONFIG", str(config_file))
        cfg = load_config()
        assert cfg.mongodb.url == "mongodb://envpath:7777"

    def test_missing_explicit_env_path_falls_back_to_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BRAINRUN_CONFIG", str(tmp_path / "absent.json"))
        monkeypatch.setenv("BRAINRUN_MONGODB_URL", "mongodb://fallback:1")
        cfg = load_config()
        assert cfg.mongodb.url == "mongodb://fallback:1"
