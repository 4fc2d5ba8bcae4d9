"""Tests for the heuristic similar-case retriever."""

from __future__ import annotations

import pytest

from casegen.errors import RetrievalError
from casegen.retrieval.retriever import (
    FEATURE_WEIGHT,
    KEYWORD_WEIGHT,
    MODULE_WEIGHT,
    HistoricalCase,
    SimilarityRetriever,
    add_to_knowledge_base,
    affinity_score,
    extract_keywords,
    jaccard,
    keyword_score,
    module_score,
    normalize_module,
    score_case,
)
from tests.fakes import make_case, make_point


class TestTokenization:
    def test_stop_words_and_short_tokens_dropped(self) -> None:
        words = extract_keywords("The user logs in to a Dashboard, x")
        assert words == {"user", "logs", "dashboard"}

    def test_punctuation_becomes_separator(self) -> None:
        assert extract_keywords("reset-password/email") == {"reset", "password", "email"}

    def test_chinese_runs_kept(self) -> None:
        assert "密码错误" in extract_keywords("密码错误 提示")

    def test_jaccard(self) -> None:
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), {"a"}) == 0.0

    def test_normalize_module_strips_suffix(self) -> None:
        assert normalize_module(" 登录模块 ") == "登录"
        assert normalize_module("Payment") == "payment"


class TestScoring:
    def test_module_match_either_direction(self) -> None:
        point = make_point(related_feature="登录")
        assert module_score(point, make_case(module="登录模块")) == 1.0
        point = make_point(related_feature="用户登录模块")
        assert module_score(point, make_case(module="登录")) == 1.0
        assert module_score(point, make_case(module="支付模块")) == 0.0

    def test_empty_module_never_matches(self) -> None:
        assert module_score(make_point(related_feature=""), make_case(module="登录")) == 0.0
        assert module_score(make_point(), make_case(module="")) == 0.0

    def test_keyword_overlap(self) -> None:
        point = make_point(name="password reset", description="email link")
        case = make_case(title="password reset", precondition="", expected_result="email sent")
        # {password, reset, email, link} vs {password, reset, email, sent}
        assert keyword_score(point, case) == pytest.approx(3 / 5)

    def test_affinity_priority_only(self) -> None:
        point = make_point(priority="P0", name="a", description="b")
        assert affinity_score(point, make_case(title="zz", priority="P1")) == 0.5
        assert affinity_score(point, make_case(title="zz", priority="P2")) == 0.0

    def test_affinity_title_containment(self) -> None:
        point = make_point(name="Login", description="verify login succeeds quickly", priority="P0")
        case = make_case(title="login succeeds", priority="P3")
        assert affinity_score(point, case) == 0.5

    def test_legacy_priority_labels(self) -> None:
        point = make_point(priority="P0", name="a", description="b")
        assert affinity_score(point, make_case(title="zz", priority="高")) == 0.5
        assert affinity_score(point, make_case(title="zz", priority="低")) == 0.0

    def test_score_is_weighted_sum(self) -> None:
        point = make_point(name="Login", description="login succeeds", priority="P1")
        case = make_case(title="login succeeds", priority="P1", module="登录模块")
        expected = (
            MODULE_WEIGHT * 1.0
            + KEYWORD_WEIGHT * keyword_score(point, case)
            + FEATURE_WEIGHT * 1.0
        )
        assert score_case(point, case) == pytest.approx(expected)
        assert 0.0 <= score_case(point, case) <= 1.0


class TestSimilarityRetriever:
    def test_empty_corpus(self) -> None:
        assert SimilarityRetriever().retrieve(make_point(), []) == []

    def test_module_scenario(self) -> None:
        point = make_point(
            name="Lock account", description="Lock after repeated failures",
            related_feature="登录模块",
        )
        login = make_case("login", title="Wrong password", module="登录模块", priority="P3")
        payment = make_case("pay", title="Refund", module="支付模块", priority="P3")
        results = SimilarityRetriever().retrieve(point, [payment, login], min_similarity=0.3)
        assert [r.case.id for r in results] == ["login"]
        assert results[0].similarity >= 0.5

    def test_results_sorted_and_limited(self) -> None:
        point = make_point(name="login", description="login works", priority="P1")
        corpus = [
            make_case("c1", title="unrelated", module="支付", priority="P3"),
            make_case("c2", title="login", module="登录", priority="P1"),
            make_case("c3", title="other", module="登录", priority="P3"),
            make_case("c4", title="login works", module="登录", priority="P2"),
        ]
        results = SimilarityRetriever().retrieve(point, corpus, max_results=2, min_similarity=0.0)
        assert len(results) == 2
        sims = [r.similarity for r in results]
        assert sims == sorted(sims, reverse=True)
        assert {r.case.id for r in results} <= {"c2", "c4"}

    def test_min_similarity_filters(self) -> None:
        point = make_point()
        corpus = [make_case(f"c{i}", module="其他", title=f"t{i}") for i in range(5)]
        results = SimilarityRetriever().retrieve(point, corpus, min_similarity=0.5)
        assert all(r.similarity >= 0.5 for r in results)
        assert results == []

    def test_constructor_defaults_apply(self) -> None:
        point = make_point()
        corpus = [make_case(f"c{i}") for i in range(5)]
        assert len(SimilarityRetriever(max_results=2, min_similarity=0.0).retrieve(point, corpus)) == 2

    def test_zero_max_results(self) -> None:
        assert SimilarityRetriever().retrieve(make_point(), [make_case()], max_results=0) == []

    def test_malformed_entry_raises_retrieval_error(self) -> None:
        with pytest.raises(RetrievalError):
            SimilarityRetriever().retrieve(make_point(), [object()], min_similarity=0.0)


class TestKnowledgeBase:
    def test_from_dict_camel_case(self) -> None:
        case = HistoricalCase.from_dict({
            "id": 7,
            "title": "Login",
            "steps": ["a", "b"],
            "expectedResult": "done",
            "relatedFeature": "登录",
            "keywords": ["auth"],
        })
        assert case.id == "7"
        assert case.steps == ("a", "b")
        assert case.expected_result == "done"
        assert case.module == "登录"
        assert case.priority == "P2"

    def test_from_dict_string_steps_stay_whole(self) -> None:
        case = HistoricalCase.from_dict({
            "id": "1", "title": "t", "steps": "open page", "keywords": "auth",
        })
        assert case.steps == ("open page",)
        assert case.keywords == ("auth",)

    def test_from_dict_odd_steps_dropped(self) -> None:
        case = HistoricalCase.from_dict({"id": "1", "title": "t", "steps": 42})
        assert case.steps == ()
        assert HistoricalCase.from_dict({"id": "1", "title": "t", "steps": "  "}).steps == ()

    def test_add_appends_new(self) -> None:
        corpus = [make_case("a")]
        updated = add_to_knowledge_base(make_case("b"), corpus)
        assert [c.id for c in updated] == ["a", "b"]
        assert len(corpus) == 1

    def test_add_replaces_existing(self) -> None:
        corpus = [make_case("a", title="old"), make_case("b")]
        updated = add_to_knowledge_base(make_case("a", title="new"), corpus)
        assert [c.id for c in updated] == ["a", "b"]
        assert updated[0].title == "new"
        assert corpus[0].title == "old"
