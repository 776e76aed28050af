"""
Parsing of simulation documents.

Two input shapes are accepted:
- the simulation document: {"metadata": {...}, "questoes": [{"id", "enunciado",
  "alternativas", "gabarito", ...}]}
- a custom question list: [{"question_text", "options": [{"text", "isCorrect"}]}, ...]
  or with "alternativas"/"gabarito"/"correct_answer" instead of options.
"""
import json
import logging
import re
import string
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from stayfocus.store.models import QuizQuestion, SimulationMetadata

logger = logging.getLogger(__name__)

CUSTOM_TITLE = "Simulado Personalizado"
CUSTOM_COMPETITION = "Questões Selecionadas"
DEFAULT_AUTHOR = "StayFocus"

_FENCE_RE = re.compile(r"```(?:json)?\s*(.+?)\s*```", re.DOTALL)


class SimuladoFormatError(ValueError):
    """Simulation data cannot be turned into a list of questions."""
    pass


def _letter(index: int) -> str:
    return string.ascii_lowercase[index]


def _decode(raw_text: str) -> Any:
    """Decode JSON, also when wrapped in a markdown code block."""
    text = raw_text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = _FENCE_RE.search(text)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass

    raise SimuladoFormatError("Invalid JSON")


def _parse_document_question(item: Dict[str, Any], position: int) -> QuizQuestion:
    if not isinstance(item, dict):
        raise SimuladoFormatError(f"Question {position}: not an object")

    alternatives = item.get("alternativas")
    if not isinstance(alternatives, dict) or not alternatives:
        raise SimuladoFormatError(f"Question {position}: missing alternativas")

    options = {str(k).lower(): str(v) for k, v in alternatives.items() if v}
    answer = str(item.get("gabarito") or "").strip().lower()
    if answer not in options:
        raise SimuladoFormatError(f"Question {position}: gabarito {answer!r} is not an option")

    return QuizQuestion(
        id=str(item.get("id") or position),
        statement=str(item.get("enunciado") or ""),
        options=options,
        correct_answer=answer,
        subject=item.get("assunto"),
        difficulty=item.get("dificuldade"),
        explanation=item.get("explicacao"),
    )


def parse_simulado(data: Dict[str, Any]) -> Tuple[SimulationMetadata, List[QuizQuestion]]:
    """Parse a {"metadata", "questoes"} document."""
    metadata = data.get("metadata")
    items = data.get("questoes")
    if not isinstance(metadata, dict) or not isinstance(items, list) or not items:
        raise SimuladoFormatError("Simulation has no metadata or questions")

    questions = [_parse_document_question(item, i + 1) for i, item in enumerate(items)]

    ids = [q.id for q in questions]
    if len(set(ids)) != len(ids):
        raise SimuladoFormatError("Duplicate question ids")

    return SimulationMetadata(
        title=str(metadata.get("titulo") or "Simulado"),
        total_questions=len(questions),
        competition=metadata.get("concurso"),
        year=metadata.get("ano"),
        area=metadata.get("area"),
        level=metadata.get("nivel"),
        author=metadata.get("autor"),
    ), questions


def _parse_custom_question(item: Dict[str, Any], position: int) -> QuizQuestion:
    if not isinstance(item, dict):
        raise SimuladoFormatError(f"Question {position}: not an object")

    options: Dict[str, str] = {}
    answer = None

    raw_options = item.get("options")
    if isinstance(raw_options, list) and raw_options:
        if len(raw_options) > len(string.ascii_lowercase):
            raise SimuladoFormatError(f"Question {position}: too many options")
        for idx, opt in enumerate(raw_options):
            if isinstance(opt, dict):
                options[_letter(idx)] = str(opt.get("text", ""))
                if opt.get("isCorrect") and answer is None:
                    answer = _letter(idx)
            else:
                options[_letter(idx)] = str(opt)
    elif isinstance(item.get("alternativas"), dict):
        options = {str(k).lower(): str(v) for k, v in item["alternativas"].items() if v}

    if not options:
        raise SimuladoFormatError(f"Question {position}: no options")

    if answer is None:
        candidate = item.get("gabarito") or item.get("correct_answer")
        if candidate is not None:
            candidate = str(candidate).strip()
            if candidate.lower() in options:
                answer = candidate.lower()
            else:
                # correct_answer may hold the option text itself
                for key, text in options.items():
                    if text == candidate:
                        answer = key
                        break

    if answer is None:
        # Same default as the web client
        answer = "a"

    return QuizQuestion(
        id=str(position),
        statement=str(item.get("question_text") or item.get("enunciado") or item.get("pergunta") or ""),
        options=options,
        correct_answer=answer,
        subject=item.get("topic") or item.get("assunto") or item.get("subject"),
        difficulty=item.get("difficulty") or item.get("dificuldade"),
        explanation=item.get("explanation") or item.get("explicacao"),
    )


def parse_custom_questions(
    items: List[Dict[str, Any]], year: Optional[int] = None
) -> Tuple[SimulationMetadata, List[QuizQuestion]]:
    """Parse a list of custom questions; ids are their 1-based positions."""
    if not isinstance(items, list) or not items:
        raise SimuladoFormatError("No questions provided")

    questions = [_parse_custom_question(item, i + 1) for i, item in enumerate(items)]
    return SimulationMetadata(
        title=CUSTOM_TITLE,
        total_questions=len(questions),
        competition=CUSTOM_COMPETITION,
        year=year or datetime.now().year,
        author=DEFAULT_AUTHOR,
    ), questions


def load_simulado(raw: Any) -> Tuple[SimulationMetadata, List[QuizQuestion]]:
    """
    Parse raw JSON text (or already decoded data) in either accepted shape.

    Raises:
        SimuladoFormatError: invalid JSON or no usable questions
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise SimuladoFormatError("File is not UTF-8 text") from e
    data = _decode(raw) if isinstance(raw, str) else raw

    if isinstance(data, dict):
        metadata, questions = parse_simulado(data)
    elif isinstance(data, list):
        metadata, questions = parse_custom_questions(data)
    else:
        raise SimuladoFormatError("Unsupported simulation format")

    logger.info("Loaded simulation %r with %d questions", metadata.title, len(questions))
    return metadata, questions


def build_simulation_payload(
    user_id: str,
    metadata: SimulationMetadata,
    questions: List[QuizQuestion],
    competition_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Row for the simulations collection, in the document format."""
    return {
        "id": str(uuid.uuid4()),
        "user_id": str(user_id),
        "competition_id": competition_id,
        "title": metadata.title,
        "metadata": metadata.to_dict(),
        "questions": [
            {
                "id": q.id,
                "enunciado": q.statement,
                "alternativas": dict(q.options),
                "gabarito": q.correct_answer,
                "assunto": q.subject,
                "dificuldade": q.difficulty,
                "explicacao": q.explanation,
            }
            for q in questions
        ],
        "total_questions": len(questions),
        "user_answers": {},
    }
