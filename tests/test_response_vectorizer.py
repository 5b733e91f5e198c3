"""Unit tests for ResponseVectorizer: answers to per-dimension vectors."""
import numpy as np
import pytest

from app.services.vectorizer_service import ResponseVectorizer, build_question_snapshots


E1 = [1.0, 0.0, 0.0, 0.0]
E2 = [0.0, 1.0, 0.0, 0.0]
E3 = [0.0, 0.0, 1.0, 0.0]


@pytest.fixture
def vectorizer():
    return ResponseVectorizer()


class TestSelectionQuestions:
    """Tests for single and multiple choice answers."""

    def test_single_choice_uses_embedding_unchanged(self, vectorizer, make_question):
        questions = build_question_snapshots(
            [make_question("mood", "style_emotion", {"calm": E1, "vivid": E2})]
        )
        result = vectorizer.vectorize(questions, {"mood": "calm"})
        np.testing.assert_allclose(result.vectors["style_emotion"], E1)
        assert result.question_counts["style_emotion"] == 1

    def test_multiple_choice_is_averaged(self, vectorizer, make_question):
        questions = build_question_snapshots(
            [
                make_question(
                    "tone", "style_emotion", {"warm": E1, "cool": E2}, question_type="multiple_choice"
                )
            ]
        )
        result = vectorizer.vectorize(questions, {"tone": ["warm", "cool"]})
        np.testing.assert_allclose(result.vectors["style_emotion"], [0.5, 0.5, 0.0, 0.0])

    def test_dimension_is_mean_of_question_vectors(self, vectorizer, make_question):
        """Each question counts once, however many options it selected."""
        questions = build_question_snapshots(
            [
                make_question(
                    "tone", "style_emotion", {"warm": E1, "cool": E2}, question_type="multiple_choice"
                ),
                make_question("mood", "style_emotion", {"cinematic": E3}),
            ]
        )
        result = vectorizer.vectorize(questions, {"tone": ["warm", "cool"], "mood": "cinematic"})
        np.testing.assert_allclose(result.vectors["style_emotion"], [0.25, 0.25, 0.5, 0.0])
        assert result.question_counts["style_emotion"] == 2

    def test_answer_by_option_id(self, vectorizer, make_question):
        question = make_question("direction", "communication_psychology", {"guided": E2})
        questions = build_question_snapshots([question])
        result = vectorizer.vectorize(questions, {"direction": str(question.choices[0].id)})
        np.testing.assert_allclose(result.vectors["communication_psychology"], E2)

    def test_image_choice(self, vectorizer, make_question):
        questions = build_question_snapshots(
            [
                make_question(
                    "look", "style_emotion", question_type="image_choice", images={"golden": E3}
                )
            ]
        )
        result = vectorizer.vectorize(questions, {"look": ["golden"]})
        np.testing.assert_allclose(result.vectors["style_emotion"], E3)


class TestPendingAndUnknown:
    """Tests for options without a current embedding and stray answers."""

    def test_pending_option_excluded(self, vectorizer, make_question):
        question = make_question(
            "tone", "style_emotion", {"warm": E1, "cool": None}, question_type="multiple_choice"
        )
        result = vectorizer.vectorize(
            build_question_snapshots([question]), {"tone": ["warm", "cool"]}
        )
        np.testing.assert_allclose(result.vectors["style_emotion"], E1)
        assert [u.target_id for u in result.excluded_units] == [question.choices[1].id]

    def test_only_pending_options_leave_dimension_undefined(self, vectorizer, make_question):
        questions = build_question_snapshots([make_question("mood", "style_emotion", {"calm": None})])
        result = vectorizer.vectorize(questions, {"mood": "calm"})
        assert result.vectors["style_emotion"] is None
        assert "style_emotion" in result.missing_dimensions
        assert len(result.excluded_units) == 1

    def test_stale_stamp_counts_as_pending(self, vectorizer, make_question):
        question = make_question("mood", "style_emotion", {"calm": E1})
        question.choices[0].embedding_generated_at = None
        result = vectorizer.vectorize(build_question_snapshots([question]), {"mood": "calm"})
        assert result.vectors["style_emotion"] is None

    def test_unknown_answer_reported(self, vectorizer, make_question):
        questions = build_question_snapshots([make_question("mood", "style_emotion", {"calm": E1})])
        result = vectorizer.vectorize(questions, {"mood": "sleepy"})
        assert result.unknown_answers == ["mood:sleepy"]
        assert result.vectors["style_emotion"] is None

    def test_unanswered_dimensions_are_undefined(self, vectorizer, make_question):
        questions = build_question_snapshots([make_question("mood", "style_emotion", {"calm": E1})])
        result = vectorizer.vectorize(questions, {"mood": "calm"})
        assert result.usable_dimensions == ["style_emotion"]
        assert result.missing_dimensions == ["communication_psychology", "purpose_story", "companion"]


class TestOtherQuestionKinds:
    """Tests for free-text answers and filter-only questions."""

    def test_text_answer_uses_session_embedding(self, vectorizer, make_question):
        questions = build_question_snapshots(
            [make_question("story", "purpose_story", question_type="textarea")]
        )
        result = vectorizer.vectorize(
            questions, {"story": "Our tenth anniversary"}, {"story": E3}
        )
        np.testing.assert_allclose(result.vectors["purpose_story"], E3)

    def test_text_answer_without_embedding_counts_as_pending(self, vectorizer, make_question):
        questions = build_question_snapshots(
            [make_question("story", "purpose_story", question_type="textarea")]
        )
        result = vectorizer.vectorize(questions, {"story": "Our tenth anniversary"})
        assert result.vectors["purpose_story"] is None
        assert result.excluded_units == []
        assert result.pending_text_answers == ["story"]
        assert result.pending_count == 1

    def test_filter_question_does_not_contribute(self, vectorizer, make_question):
        questions = build_question_snapshots([make_question("region", None, {"seoul": E1})])
        result = vectorizer.vectorize(questions, {"region": "seoul"})
        assert all(v is None for v in result.vectors.values())
        assert result.unknown_answers == []
