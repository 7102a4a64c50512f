"""Tests for secret and config map redaction."""

from __future__ import annotations

import copy

from kubeview.constants import LAST_APPLIED_ANNOTATION, REDACTED
from kubeview.redaction import DEFAULT_POLICY, build_policy, redact, redact_all

from .conftest import make_obj, make_secret


class TestSecrets:
    def test_values_replaced_keys_kept(self) -> None:
        secret = make_secret(username="YWRtaW4=", password="czNjcjN0")
        out = redact(secret)
        assert out["data"] == {"username": REDACTED, "password": REDACTED}
        assert out["metadata"]["name"] == "db-creds"
        assert out["type"] == "Opaque"

    def test_input_not_mutated(self) -> None:
        secret = make_secret()
        secret["metadata"]["annotations"] = {LAST_APPLIED_ANNOTATION: '{"data":{"password":"czNjcjN0"}}'}
        before = copy.deepcopy(secret)
        redact(secret)
        assert secret == before

    def test_string_data_and_last_applied_redacted(self) -> None:
        secret = make_secret()
        secret["stringData"] = {"token": "plain"}
        secret["metadata"]["annotations"] = {
            LAST_APPLIED_ANNOTATION: '{"stringData":{"token":"plain"}}',
            "team": "payments",
        }
        out = redact(secret)
        assert out["stringData"] == {"token": REDACTED}
        assert out["metadata"]["annotations"][LAST_APPLIED_ANNOTATION] == REDACTED
        assert out["metadata"]["annotations"]["team"] == "payments"

    def test_secret_without_data(self) -> None:
        secret = make_obj("Secret", "empty")
        assert redact(secret) == secret

    def test_non_mapping_data_left_alone(self) -> None:
        secret = make_obj("Secret", "odd", data=None)
        assert redact(secret)["data"] is None


class TestOtherKinds:
    def test_pod_returned_as_is(self) -> None:
        pod = make_obj("Pod", "web-1", spec={"containers": [{"name": "app"}]})
        assert redact(pod) is pod

    def test_configmap_untouched_by_default(self) -> None:
        cm = make_obj("ConfigMap", "settings", data={"LOG_LEVEL": "debug"})
        assert redact(cm, DEFAULT_POLICY)["data"] == {"LOG_LEVEL": "debug"}

    def test_configmap_redacted_when_enabled(self) -> None:
        cm = make_obj("ConfigMap", "settings", data={"LOG_LEVEL": "debug"}, binaryData={"blob": "AAEC"})
        out = redact(cm, build_policy(redact_configmaps=True))
        assert out["data"] == {"LOG_LEVEL": REDACTED}
        assert out["binaryData"] == {"blob": REDACTED}

    def test_non_dict_input(self) -> None:
        assert redact(None) is None  # type: ignore[arg-type]


def test_redact_all_mixed_listing() -> None:
    items = [make_obj("Pod", "web-1"), make_secret()]
    out = redact_all(items)
    assert out[0] is items[0]
    assert out[1]["data"]["password"] == REDACTED
    assert items[1]["data"]["password"] != REDACTED
