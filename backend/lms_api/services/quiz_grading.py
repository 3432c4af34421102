"""Automatic grading of quiz answers.

Questions and answers are the JSON documents stored on ``Quiz.questions`` and
``QuizSubmission.answers``. Each question scores a fraction between 0 and 1
that is weighted by its ``points``; the submission score is the percentage of
points earned, rounded to two decimals.

Answer documents look like::

    {"question_id": "q1", "selected_answer_id": "opt-a"}
    {"question_id": "q2", "selected_answer_ids": ["opt-a", "opt-c"]}
    {"question_id": "q3", "matching_answers": {"item-1": "match-2"}}
    {"question_id": "q4", "text_answer": "photosynthesis"}
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)

MANUAL_GRADING_TYPES = frozenset({"essay", "ordering", "fill_in_blank"})
MANUAL_GRADING_FEEDBACK = "Manual grading required for this question type"
NO_ANSWER_FEEDBACK = "No answer provided"

QuestionScore = Tuple[float, Optional[str]]


def _feedback(question: Dict[str, Any], key: str) -> Optional[str]:
    feedback = question.get("feedback")
    if isinstance(feedback, dict):
        return feedback.get(key)
    return None


def _grade_multiple_choice(question: Dict[str, Any], answer: Dict[str, Any]) -> QuestionScore:
    selected = answer.get("selected_answer_id")
    if not selected:
        return 0.0, NO_ANSWER_FEEDBACK
    correct = next((opt for opt in question.get("options", []) if opt.get("correct")), None)
    if correct is None:
        return 0.0, "No correct answer defined"
    if selected == correct.get("id"):
        return 1.0, _feedback(question, "correct") or "Correct!"
    return 0.0, _feedback(question, "incorrect") or f"Incorrect. The correct answer is: {correct.get('text')}"


def _grade_true_false(question: Dict[str, Any], answer: Dict[str, Any]) -> QuestionScore:
    raw = answer.get("selected_answer_id")
    if raw is None or raw == "":
        return 0.0, NO_ANSWER_FEEDBACK
    selected = str(raw).lower() == "true"
    expected = bool(question.get("correct_answer"))
    if selected == expected:
        return 1.0, _feedback(question, "correct") or "Correct!"
    label = "True" if expected else "False"
    return 0.0, _feedback(question, "incorrect") or f"Incorrect. The correct answer is: {label}"


def _grade_multiple_answer(question: Dict[str, Any], answer: Dict[str, Any]) -> QuestionScore:
    selected = answer.get("selected_answer_ids")
    if selected is None:
        single = answer.get("selected_answer_id")
        selected = [single] if single else []
    correct_ids = {opt.get("id") for opt in question.get("options", []) if opt.get("correct")}
    if not correct_ids:
        return 0.0, "No correct answers defined"

    correct_count = sum(1 for option_id in selected if option_id in correct_ids)
    incorrect_count = len(selected) - correct_count

    if question.get("partial_credit"):
        score = max(0.0, (correct_count - incorrect_count) / len(correct_ids))
    else:
        score = 1.0 if correct_count == len(correct_ids) and incorrect_count == 0 else 0.0

    if score == 1:
        return score, _feedback(question, "correct") or "All answers correct!"
    if score > 0:
        return score, _feedback(question, "incorrect") or (
            f"Partially correct ({correct_count} correct, {incorrect_count} incorrect)"
        )
    return score, _feedback(question, "incorrect") or "Incorrect. Try again."


def _grade_matching(question: Dict[str, Any], answer: Dict[str, Any]) -> QuestionScore:
    pairs = question.get("matches") or []
    given = answer.get("matching_answers") or {}
    if not pairs:
        return 0.0, "No matches defined"
    correct_count = sum(1 for pair in pairs if given.get(pair.get("id")) == pair.get("correct_match_id"))
    return correct_count / len(pairs), f"Matched {correct_count} of {len(pairs)} items correctly"


def _grade_short_answer(question: Dict[str, Any], answer: Dict[str, Any]) -> QuestionScore:
    text = answer.get("text_answer") or ""
    if not text.strip():
        return 0.0, NO_ANSWER_FEEDBACK
    case_sensitive = bool(question.get("case_sensitive"))

    def _same(left: str, right: str) -> bool:
        return left == right if case_sensitive else left.lower() == right.lower()

    expected = question.get("expected_answer")
    acceptable = question.get("acceptable_answers") or []
    pattern = question.get("match_pattern")

    if expected:
        is_correct = _same(text, expected)
    elif acceptable:
        is_correct = any(_same(text, candidate) for candidate in acceptable)
    elif pattern and question.get("match_type") == "regex":
        try:
            is_correct = re.search(pattern, text, 0 if case_sensitive else re.IGNORECASE) is not None
        except re.error:
            logger.warning("Invalid regex pattern on question %s", question.get("id"))
            return 0.0, "Error evaluating answer"
    else:
        return 0.0, "This question requires manual grading"

    if is_correct:
        return 1.0, _feedback(question, "correct") or "Correct!"
    return 0.0, _feedback(question, "incorrect") or "Incorrect. Try again."


_GRADERS = {
    "multiple_choice": _grade_multiple_choice,
    "true_false": _grade_true_false,
    "multiple_answer": _grade_multiple_answer,
    "matching": _grade_matching,
    "short_answer": _grade_short_answer,
}


def grade_question(question: Dict[str, Any], answer: Optional[Dict[str, Any]]) -> QuestionScore:
    if answer is None:
        return 0.0, NO_ANSWER_FEEDBACK
    grader = _GRADERS.get(question.get("type"))
    if grader is None:
        return 0.0, MANUAL_GRADING_FEEDBACK
    return grader(question, answer)


def correct_answer_text(question: Dict[str, Any]) -> str:
    kind = question.get("type")
    if kind in ("multiple_choice", "multiple_answer"):
        return ", ".join(opt.get("text", "") for opt in question.get("options", []) if opt.get("correct"))
    if kind == "true_false":
        return "True" if question.get("correct_answer") else "False"
    if kind == "matching":
        rendered = []
        for pair in question.get("matches") or []:
            target = next(
                (m.get("text") for m in pair.get("matches", []) if m.get("id") == pair.get("correct_match_id")),
                "?",
            )
            rendered.append(f"{pair.get('item')} -> {target}")
        return "; ".join(rendered)
    if kind == "short_answer":
        if question.get("expected_answer"):
            return question["expected_answer"]
        acceptable = question.get("acceptable_answers") or []
        return " OR ".join(acceptable) if acceptable else "No expected answer defined"
    if kind == "ordering":
        items = sorted(question.get("items") or [], key=lambda item: item.get("correct_position", 0))
        return " -> ".join(item.get("text", "") for item in items)
    if kind in MANUAL_GRADING_TYPES:
        return "Manual grading required"
    return "No correct answer available"


def _student_answer(answer: Optional[Dict[str, Any]]) -> Any:
    if not answer:
        return None
    for key in ("selected_answer_id", "selected_answer_ids", "matching_answers", "text_answer"):
        if answer.get(key) is not None:
            return answer[key]
    return None


def auto_grade(questions: List[Dict[str, Any]], answers: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Grade *answers* against *questions*.

    Returns ``raw_score`` (percentage), ``question_results`` and
    ``needs_manual_review`` (True when a question could not be graded
    automatically).
    """

    by_question = {answer.get("question_id"): answer for answer in answers if isinstance(answer, dict)}
    total = 0.0
    max_points = 0.0
    needs_manual_review = False
    results: List[Dict[str, Any]] = []

    for question in questions:
        points = question.get("points")
        if not question.get("id") or not question.get("type") or not points:
            continue
        max_points += points
        answer = by_question.get(question["id"])
        fraction, feedback = grade_question(question, answer)
        if question["type"] not in _GRADERS:
            needs_manual_review = True
        score = fraction * points
        total += score
        results.append(
            {
                "question_id": question["id"],
                "question_type": question["type"],
                "points": points,
                "score": round(score, 2),
                "is_correct": fraction == 1,
                "feedback": feedback or ("Correct" if fraction == 1 else "Incorrect"),
                "correct_answer": correct_answer_text(question),
                "student_answer": _student_answer(answer),
            }
        )

    percentage = (total / max_points) * 100 if max_points > 0 else 0.0
    return {
        "raw_score": round(percentage, 2),
        "question_results": results,
        "needs_manual_review": needs_manual_review,
    }
