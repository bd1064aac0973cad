"""Pydantic models for transcription and pronunciation-scoring payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

ACCURATE_PHONE_SCORE = 70.0


class TranscriptionResult(BaseModel):
    id: str = ""
    text: str = ""
    confidence: float = 0.0
    audio_duration: float = 0.0
    status: str = "completed"


class PhoneScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    phone: str
    quality_score: float = 0.0


class SyllableScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    syllable: str = ""
    quality_score: float = 0.0


class WordScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    word: str
    quality_score: float = 0.0
    phone_score_list: List[PhoneScore] = Field(default_factory=list)
    syllable_score_list: List[SyllableScore] = Field(default_factory=list)


class OverallScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    pronunciation: Optional[float] = None
    fluency: Optional[float] = None
    phone_score: Optional[float] = None
    stress_score: Optional[float] = None
    cefr_level: Optional[str] = None
    ielts_level: Optional[str] = None
    toeic_level: Optional[str] = None
    pte_level: Optional[str] = None


class TextScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None
    quality_score: Optional[float] = None
    fluency_score: Optional[float] = None
    phone_score: Optional[float] = None
    stress_score: Optional[float] = None
    speechace_score: Optional[OverallScore] = None
    word_score_list: List[WordScore] = Field(default_factory=list)


class ScoreResult(BaseModel):
    """Pronunciation score for one segment.

    Accepts both the flat layout (scores at the top level) and the service's
    nested ``text_score`` layout; unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    speechace_score: Optional[OverallScore] = None
    word_score_list: List[WordScore] = Field(default_factory=list)
    syllable_score_list: List[SyllableScore] = Field(default_factory=list)
    phone_score_list: List[PhoneScore] = Field(default_factory=list)
    text_score: Optional[TextScore] = None

    def _overall(self) -> Optional[OverallScore]:
        if self.speechace_score is not None:
            return self.speechace_score
        if self.text_score is not None:
            return self.text_score.speechace_score
        return None

    def pronunciation_score(self) -> Optional[float]:
        overall = self._overall()
        if overall is None or not overall.pronunciation:
            return None
        return overall.pronunciation

    def word_scores(self) -> List[WordScore]:
        if self.word_score_list:
            return list(self.word_score_list)
        if self.text_score is not None:
            return list(self.text_score.word_score_list)
        return []

    def phoneme_scores(self) -> List[PhoneScore]:
        if self.phone_score_list:
            return list(self.phone_score_list)
        return [phone for word in self.word_scores() for phone in word.phone_score_list]

    def proficiency_levels(self) -> Dict[str, str]:
        overall = self._overall()
        levels: Dict[str, str] = {}
        if overall is None:
            return levels
        for key in ("cefr", "ielts", "toeic", "pte"):
            value = getattr(overall, f"{key}_level")
            if value:
                levels[key] = value
        return levels

    def summary(self) -> Dict[str, Any]:
        words = self.word_scores()
        phones = self.phoneme_scores()
        summary: Dict[str, Any] = {
            "overall_score": self.pronunciation_score(),
            "word_count": len(words),
            "phoneme_count": len(phones),
            "proficiency_levels": self.proficiency_levels(),
        }
        if words:
            summary["average_word_score"] = sum(w.quality_score for w in words) / len(words)
        if phones:
            accurate = sum(1 for p in phones if p.quality_score >= ACCURATE_PHONE_SCORE)
            summary["phoneme_accuracy_rate"] = accurate / len(phones) * 100
        return summary


__all__ = [
    "OverallScore",
    "PhoneScore",
    "ScoreResult",
    "SyllableScore",
    "TextScore",
    "TranscriptionResult",
    "WordScore",
]
