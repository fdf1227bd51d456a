import pytest

from dns_security_soc.classification import HeuristicTables, KeywordClassifier


@pytest.fixture
def classifier():
    return KeywordClassifier()


class TestBlockedDecision:
    @pytest.mark.parametrize("decision", ["2", "3", "6", "9", 3])
    def test_blocking_codes(self, classifier, decision):
        assert classifier.is_blocked(decision) is True

    @pytest.mark.parametrize("decision", ["0", "1", "4", "5", "7", "8", "10", "", None])
    def test_other_codes(self, classifier, decision):
        assert classifier.is_blocked(decision) is False


class TestThreatCategory:
    def test_first_matching_category_wins(self, classifier):
        names = ["Technology", "Phishing", "Malware"]
        assert classifier.threat_category(names) == "Phishing"

    def test_case_insensitive(self, classifier):
        assert classifier.threat_category(["SPYWARE hosts"]) == "SPYWARE hosts"

    def test_no_security_category(self, classifier):
        assert classifier.threat_category(["News", "Sports"]) is None
        assert classifier.threat_category([]) is None
        assert classifier.threat_category(None) is None


class TestRiskScore:
    def test_allowed_is_zero(self, classifier):
        assert classifier.risk_score(False, "Malware") == 0

    def test_blocked_without_category_is_base(self, classifier):
        assert classifier.risk_score(True, None) == 80

    @pytest.mark.parametrize(
        "category, expected",
        [("Malware", 95), ("Phishing", 90), ("Botnet", 100), ("Spyware", 95)],
    )
    def test_keyword_bonus(self, classifier, category, expected):
        assert classifier.risk_score(True, category) == expected

    def test_overlapping_bonuses_stack_and_cap(self, classifier):
        assert classifier.risk_score(True, "Malware and Phishing") == 100

    @pytest.mark.parametrize("category", [None, "Malware", "Botnet Spyware Malware", "Other"])
    def test_blocked_always_in_range(self, classifier, category):
        score = classifier.risk_score(True, category)
        assert 80 <= score <= 100


class TestApplicationInference:
    def test_known_application(self, classifier):
        assert classifier.infer_application("teams.microsoft.com") == "Microsoft Office365"
        assert classifier.infer_application("mail.gmail.com") == "Google"

    def test_unknown_application(self, classifier):
        assert classifier.infer_application("example.org") is None


def test_custom_tables():
    tables = HeuristicTables(
        blocked_decisions=frozenset({"7"}),
        base_risk_score=50,
        max_risk_score=60,
        keyword_bonuses=(("crypto", 30),),
        default_threat_category="Other",
        suspicious_cname_markers=(),
    )
    classifier = KeywordClassifier(tables)
    assert classifier.is_blocked("7")
    assert not classifier.is_blocked("3")
    assert classifier.threat_category(["Cryptomining"]) == "Cryptomining"
    assert classifier.risk_score(True, "Cryptomining") == 60
