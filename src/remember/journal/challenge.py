"""Recall challenge that gates restoration of entries carrying questions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from remember.journal.entry import Entry, MemoryQuestion

PASS_RATIO = 0.5


def is_correct(question: MemoryQuestion, answer: str) -> bool:
    """Answers are compared case-insensitively."""
    return answer.casefold() == question.answer.casefold()


def score_answers(questions: Sequence[MemoryQuestion], answers: Sequence[str]) -> float:
    """Fraction of questions answered correctly. Missing answers count as wrong."""
    if not questions:
        return 1.0
    correct = sum(
        1 for i, q in enumerate(questions) if i < len(answers) and is_correct(q, answers[i])
    )
    return correct / len(questions)


def passes(score: float) -> bool:
    return score >= PASS_RATIO


@dataclass
class ChallengeResult:
    score: float
    passed: bool
    entry: Entry | None = None


class RecallChallenge:
    """Step-by-step quiz over an entry's questions."""

    def __init__(self, questions: Sequence[MemoryQuestion]) -> None:
        self.questions = tuple(questions)
        self.reset()

    def reset(self) -> None:
        self.current_index = 0
        self.answers: list[str] = []
        self.correct = 0

    @property
    def current_question(self) -> MemoryQuestion | None:
        if self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def completed(self) -> bool:
        return self.current_index >= len(self.questions)

    @property
    def progress(self) -> float:
        """Percentage of questions answered so far."""
        if not self.questions:
            return 100.0
        return self.current_index / len(self.questions) * 100

    def submit_answer(self, answer: str) -> bool:
        """Record an answer to the current question and advance."""
        question = self.current_question
        if question is None:
            raise RuntimeError("Challenge already completed")
        self.answers.append(answer)
        ok = is_correct(question, answer)
        if ok:
            self.correct += 1
        self.current_index += 1
        return ok

    def result(self) -> ChallengeResult:
        score = score_answers(self.questions, self.answers)
        return ChallengeResult(score=score, passed=self.completed and passes(score))
