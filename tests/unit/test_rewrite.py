"""
Unit tests for the rewrite package: response cache, batch field rewriting,
text service clients and field transform rules.
"""

import threading

import pytest
import requests

from xmldb_tool.exceptions import AuthError, ConfigurationError, TransportError
from xmldb_tool.rewrite import (
    AiResponseCache, BatchFieldRewriter, ChatCompletionClient, MappingRule, RegexRule, TextService,
    TextStyleRule, TransformContext, apply_rule, apply_rules, build_batch_prompt, canonical_model_name,
    create_text_service, parse_batch_result, register_text_service, rule_matches, supported_models,
    validate_transform
)
from xmldb_tool.rewrite import text_service as text_service_module
from xmldb_tool.rewrite.batch_rewriter import DELIMITER


class Settings:
    """Minimal stand-in for the configuration manager."""

    def __init__(self, values=None):
        self.values = values or {}

    def get_property(self, key, default=None):
        return self.values.get(key, default)


class UpperService(TextService):
    """Answers batch prompts by upper-casing every value."""

    def __init__(self, failures=0):
        self.prompts = []
        self.failures = failures
        self.lock = threading.Lock()

    def chat(self, prompt):
        with self.lock:
            self.prompts.append(prompt)
            if self.failures:
                self.failures -= 1
                raise TransportError("connection reset")
        body = prompt.split(":\n", 1)[1]
        return DELIMITER.join(part.upper() for part in body.split(DELIMITER))


class FakeResponse:

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.payload = payload
        self.text = text

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def _reply(content):
    return FakeResponse(payload={'choices': [{'message': {'content': content}}]})


class TestAiResponseCache:

    def test_entries_expire(self):
        now = [0.0]
        cache = AiResponseCache(ttl_seconds=10, clock=lambda: now[0])
        cache.put("prompt", "answer")
        now[0] = 9.0
        assert cache.get("prompt") == "answer"
        assert len(cache) == 1
        now[0] = 10.0
        assert cache.get("prompt") is None
        assert "prompt" not in cache

    def test_no_ttl_keeps_entries(self):
        now = [0.0]
        cache = AiResponseCache(ttl_seconds=None, clock=lambda: now[0])
        cache.put("prompt", "")
        now[0] = 1e9
        assert cache.get("prompt") == ""

    def test_invalidate_and_clear(self):
        cache = AiResponseCache()
        cache.put("a", "1")
        cache.put("b", "2")
        assert cache.invalidate("a")
        assert not cache.invalidate("a")
        cache.clear()
        assert len(cache) == 0

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            AiResponseCache(ttl_seconds=0)


class TestBatchHelpers:

    def test_prompt_and_result(self):
        assert build_batch_prompt(["a", "b"], "Rewrite") == f"Rewrite:\na{DELIMITER}b"
        assert parse_batch_result(f" A {DELIMITER}B", 3) == ["A", "B", ""]
        assert parse_batch_result(f"A{DELIMITER}B{DELIMITER}C", 2) == ["A", "B"]


class TestBatchFieldRewriter:

    def test_values_rewritten_in_order_across_batches(self):
        service = UpperService()
        rewriter = BatchFieldRewriter(service, batch_size=2, workers=2, sleep=lambda delay: None)

        result = rewriter.rewrite_field("item", "name", ["axe", "bow", None, "dagger", "elixir"])

        assert result == ["AXE", "BOW", "", "DAGGER", "ELIXIR"]
        assert len(service.prompts) == 3

    def test_instruction_from_settings(self):
        service = UpperService()
        settings = Settings({"ai.promptKey.item@name": "Make it epic"})
        BatchFieldRewriter(service, settings, sleep=lambda delay: None).rewrite_field("item", "name", ["axe"])
        assert service.prompts == ["Make it epic:\naxe"]

    def test_retries_with_increasing_delay(self):
        service = UpperService(failures=2)
        sleeps = []
        rewriter = BatchFieldRewriter(service, workers=1, retry_delay_seconds=0.5, sleep=sleeps.append)

        assert rewriter.rewrite_field("item", "name", ["axe"]) == ["AXE"]
        assert sleeps == [0.5, 1.0]

    def test_exhausted_batch_keeps_originals_and_is_cached(self):
        service = UpperService(failures=10)
        sleeps = []
        rewriter = BatchFieldRewriter(service, workers=1, max_retry_attempts=3, sleep=sleeps.append)

        assert rewriter.rewrite_field("item", "name", ["axe", "bow"]) == ["axe", "bow"]
        assert len(service.prompts) == 3
        assert rewriter.rewrite_field("item", "name", ["axe", "bow"]) == ["axe", "bow"]
        assert len(service.prompts) == 3

    def test_short_reply_keeps_unanswered_values(self):
        class ShortService(TextService):
            def chat(self, prompt):
                return "AXE"

        rewriter = BatchFieldRewriter(ShortService(), sleep=lambda delay: None)
        assert rewriter.rewrite_field("item", "name", ["axe", "bow"]) == ["AXE", "bow"]

    def test_rewrite_rows_in_place(self):
        rows = [{"id": "1", "name": "axe"}, {"id": "2"}]
        BatchFieldRewriter(UpperService(), sleep=lambda delay: None).rewrite_rows(rows, "item", "name")
        assert rows == [{"id": "1", "name": "AXE"}, {"id": "2"}]

    def test_empty_input_and_invalid_batch_size(self):
        assert BatchFieldRewriter(UpperService()).rewrite_field("item", "name", []) == []
        with pytest.raises(ValueError):
            BatchFieldRewriter(UpperService(), batch_size=0)


class TestChatCompletionClient:

    def _client(self, session, api_key="secret", model="qwen-plus"):
        return ChatCompletionClient("qwen", api_key, model, "https://example.test/v1/", session=session)

    def test_successful_request(self):
        session = FakeSession(_reply("Flame Blade"))
        assert self._client(session).chat("Rewrite: Fire Sword") == "Flame Blade"

        call = session.calls[0]
        assert call['url'] == "https://example.test/v1/chat/completions"
        assert call['headers']['Authorization'] == "Bearer secret"
        assert call['json'] == {'model': 'qwen-plus',
                                'messages': [{'role': 'user', 'content': 'Rewrite: Fire Sword'}]}

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_credentials(self, status):
        with pytest.raises(AuthError):
            self._client(FakeSession(FakeResponse(status_code=status))).chat("hi")

    def test_server_error(self):
        with pytest.raises(TransportError) as excinfo:
            self._client(FakeSession(FakeResponse(status_code=500, text="overloaded"))).chat("hi")
        assert "500" in str(excinfo.value)
        assert excinfo.value.source == "https://example.test/v1/chat/completions"

    def test_network_failure(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        with pytest.raises(TransportError):
            self._client(session).chat("hi")

    @pytest.mark.parametrize("payload", [{}, {'choices': []}, ValueError("not json")])
    def test_unexpected_payload(self, payload):
        with pytest.raises(TransportError):
            self._client(FakeSession(FakeResponse(payload=payload))).chat("hi")

    def test_missing_configuration(self):
        with pytest.raises(ConfigurationError):
            self._client(FakeSession(_reply("x")), api_key=None).chat("hi")
        with pytest.raises(ConfigurationError):
            self._client(FakeSession(_reply("x")), model=None).chat("hi")


class TestServiceRegistry:

    @pytest.fixture(autouse=True)
    def private_registry(self, monkeypatch):
        monkeypatch.setattr(text_service_module, "_REGISTRY", dict(text_service_module._REGISTRY))

    @pytest.mark.parametrize("name,expected", [
        ("Qwen", "qwen"),
        ("tongyi-qianwen", "qwen"),
        ("DeepSeek-V3", "deepseek"),
        (" kimi ", "kimi"),
    ])
    def test_canonical_names(self, name, expected):
        assert canonical_model_name(name) == expected

    @pytest.mark.parametrize("name", ["", "  ", "gpt-4"])
    def test_unsupported_names(self, name):
        with pytest.raises(ConfigurationError):
            canonical_model_name(name)

    def test_create_from_settings(self):
        settings = Settings({"ai.kimi.apikey": "k", "ai.timeout": "5"})
        session = FakeSession(_reply("ok"))

        service = create_text_service("kimi", settings, session=session)

        assert isinstance(service, ChatCompletionClient)
        assert service.model == "moonshot-v1-8k"
        assert service.endpoint == "https://api.moonshot.cn/v1/chat/completions"
        assert service.timeout == 5.0
        assert service.chat("hi") == "ok"

    def test_register_custom_service(self):
        class EchoService(TextService):
            def chat(self, prompt):
                return prompt

        register_text_service("Echo", lambda config_manager: EchoService())

        assert "echo" in supported_models()
        assert create_text_service("echo", Settings()).chat("same") == "same"


class TestRules:

    def test_mapping_rule(self):
        rule = MappingRule("names", {"Fire Sword": "Flame Blade"})
        context = TransformContext("items.xml", "name")
        assert apply_rule(rule, "fire sword", context) == "Flame Blade"
        assert apply_rule(rule, "Fire Sword +1", context) == "Flame Blade"
        assert apply_rule(rule, "Bow", context) == "Bow"
        assert apply_rule(MappingRule("m", {"a": "b"}, default_value="?"), "zzz", context) == "?"
        assert apply_rule(rule, "", context) == ""

    def test_case_sensitive_mapping(self):
        rule = MappingRule("names", {"Axe": "Hatchet"}, case_sensitive=True)
        context = TransformContext("items.xml", "name")
        assert apply_rule(rule, "Axe", context) == "Hatchet"
        assert apply_rule(rule, "AXE", context) == "AXE"

    def test_regex_rule(self):
        context = TransformContext("items.xml", "name")
        assert apply_rule(RegexRule("digits", r"\d+", "#"), "lv 10 to 20", context) == "lv # to #"
        assert apply_rule(RegexRule("first", r"\d+", "#", replace_all=False), "lv 10 to 20", context) == "lv # to 20"
        with pytest.raises(ValueError):
            RegexRule("broken", "(")

    def test_text_style_rule(self):
        class StyleService(TextService):
            def __init__(self):
                self.prompts = []

            def chat(self, prompt):
                self.prompts.append(prompt)
                return " Grim Blade "

        service = StyleService()
        rule = TextStyleRule("dark", "dark fantasy", "Rewrite in a dark fantasy tone")
        context = TransformContext("items.xml", "name", record_id="7", text_service=service)

        assert apply_rule(rule, "Fire Sword", context) == "Grim Blade"
        assert "Original: Fire Sword" in service.prompts[0]
        assert "Record: 7" in service.prompts[0]
        assert apply_rule(rule, "123", context) == "123"
        assert len(service.prompts) == 1

    def test_text_style_rule_keeps_value_on_service_failure(self):
        class DownService(TextService):
            def chat(self, prompt):
                raise TransportError("down")

        rule = TextStyleRule("dark", "dark fantasy", "Rewrite")
        context = TransformContext("items.xml", "name", text_service=DownService())
        assert apply_rule(rule, "Fire Sword", context) == "Fire Sword"

    @pytest.mark.parametrize("field_name,expected", [
        ("name", True),
        ("item_description", True),
        ("monster_id", False),
        ("attack_level", False),
        ("icon", False),
    ])
    def test_text_style_field_selection(self, field_name, expected):
        assert rule_matches(TextStyleRule("dark", "dark", "Rewrite"), "items.xml", field_name) == expected

    def test_glob_selection(self):
        rule = RegexRule("r", "x", field_pattern="*_name", file_pattern="monsters/*.xml")
        assert rule_matches(rule, "monsters/boss.xml", "Boss_Name")
        assert not rule_matches(rule, "items/sword.xml", "item_name")

    def test_validate_transform(self):
        style = TextStyleRule("dark", "dark", "Rewrite")
        assert validate_transform(style, "Fire Sword", "Grim Blade")
        assert not validate_transform(style, "Fire Sword", "x" * 40)
        assert not validate_transform(MappingRule("m"), "a", "")
        assert validate_transform(RegexRule("r", "a"), "abc", "abc")
        assert not validate_transform(RegexRule("r", "a"), "a", "b" * 6)
        assert not validate_transform(style, "a", None)

    def test_rules_run_by_priority(self):
        rules = [
            MappingRule("names", {"fire sword": "Flame Blade"}, field_pattern="name"),
            RegexRule("blade", r"Blade", "Edge", field_pattern="name"),
        ]
        result = apply_rules(rules, {"name": "Fire Sword", "level": "10"}, "items.xml")
        assert result == {"name": "Flame Blade", "level": "10"}

    def test_invalid_output_keeps_previous_value(self):
        class VerboseService(TextService):
            def chat(self, prompt):
                return "An extremely long and rambling description of a sword"

        rules = [TextStyleRule("dark", "dark", "Rewrite")]
        record = {"name": "Axe"}
        assert apply_rules(rules, record, "items.xml", text_service=VerboseService()) == {"name": "Axe"}


