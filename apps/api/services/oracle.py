"""Reasoning oracle adapter.

Builds the clarifying-question and analysis prompts, sends them through
the LLM client and validates what comes back. Malformed output is always
reported as an error; weights are never invented here.
"""

from typing import Optional, Sequence

from pydantic import ValidationError

from models.schemas import ClarifyingAnswer, ClarifyingQuestion, DecisionAnalysis
from services.llm import LLMClient
from utils.json_extraction import extract_json_from_response
from utils.logging import get_logger

logger = get_logger(__name__)

MAX_QUESTIONS = 4


class OracleFormatError(Exception):
    """Raised when the oracle's response is empty or does not fit the schema."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)


class OracleRefusalError(OracleFormatError):
    """Raised when the oracle answered in prose instead of JSON.

    The oracle's own text is the message, since it usually explains why
    it declined.
    """

    def __init__(self, raw_response: str):
        super().__init__(raw_response.strip(), raw_response=raw_response)


CLARIFY_PROMPT = """You are helping a user make a decision. They need to choose between options, but you should first ask them 2-4 clarifying questions to better understand their situation and provide a more personalized recommendation.

Question: {question}

Options:
{options}{history}

Generate 2-4 relevant clarifying questions that would help you provide better advice. Questions should be specific to this decision and help understand the user's context, constraints, goals, or preferences.

Format your response as JSON with questions and optional default answers:
{{
  "questions": [
    {{"question": "Question 1 here?", "defaultAnswer": "Previous answer if applicable, otherwise empty string"}},
    {{"question": "Question 2 here?", "defaultAnswer": ""}}
  ]
}}

Keep questions concise and relevant. Don't ask more than 4 questions."""

ANALYZE_PROMPT = """You are a decision analysis assistant. A user is trying to decide between options and needs your help.

Question: {question}

Options:
{options}{answers}{history}

Please analyze this decision and provide:
1. A brief analysis of each option (2-3 sentences per option)
2. Weighted probabilities for each option based on logic (must total 100%)
3. Key factors to consider
4. A final recommendation
5. Risk scenarios for each option (best-case and worst-case outcomes)
{history_note}
Format your response as JSON with this structure:
{{
  "analysis": "Overall analysis of the situation",
  "optionAnalyses": [
    {{
      "option": "option 1",
      "analysis": "analysis of option 1",
      "weight": 40,
      "bestCase": "Best possible outcome if this goes really well",
      "worstCase": "Worst possible outcome if this goes poorly"
    }},
    {{
      "option": "option 2",
      "analysis": "analysis of option 2",
      "weight": 60,
      "bestCase": "Best possible outcome",
      "worstCase": "Worst possible outcome"
    }}
  ],
  "keyFactors": ["factor 1", "factor 2", "factor 3"],
  "recommendation": "Final recommendation with reasoning"
}}

Use the option names exactly as listed. Make the weights realistic based on the pros and cons. Higher weight = stronger recommendation.
For risk scenarios, be realistic but consider both optimistic and pessimistic outcomes."""

HISTORY_NOTE = (
    "\nNOTE: Use the user's past similar decisions to identify patterns in their "
    "preferences and personalize your recommendation accordingly. Consider what "
    "they've chosen before in related situations.\n"
)


def _numbered(options: Sequence[str]) -> str:
    return "\n".join(f"{i}. {option}" for i, option in enumerate(options, start=1))


def _section(text: str) -> str:
    return f"\n\n{text}" if text else ""


def _answers_section(answers: Optional[Sequence[ClarifyingAnswer]]) -> str:
    if not answers:
        return ""
    pairs = "\n\n".join(f"Q: {qa.question}\nA: {qa.answer}" for qa in answers)
    return f"\n\nUser's Context:\n{pairs}"


def _parse_json(response: str, context: str) -> dict:
    if not response or not response.strip():
        logger.error(f"Oracle returned an empty response ({context})")
        raise OracleFormatError("Oracle returned an empty response")

    data = extract_json_from_response(response, context=context)
    if data is None:
        logger.error(f"Oracle response contained no JSON ({context})")
        raise OracleRefusalError(response)
    if not isinstance(data, dict):
        logger.error(f"Oracle response JSON is not an object ({context})")
        raise OracleFormatError("Oracle response is not a JSON object", raw_response=response)
    return data


class DecisionOracle:
    """Adapter between the decision flow and the reasoning model."""

    def __init__(self, llm_client: LLMClient):
        self.llm = llm_client

    async def generate_questions(
        self,
        question: str,
        options: Sequence[str],
        answer_context: str = "",
        user_id: Optional[str] = None,
    ) -> list[ClarifyingQuestion]:
        """Ask the oracle for 2-4 clarifying questions.

        Args:
            question: The decision question
            options: Candidate options in display order
            answer_context: Formatted past answers, "" to omit
            user_id: Caller, for log correlation

        Returns:
            Clarifying questions, each with a (possibly empty) default answer

        Raises:
            OracleRefusalError: The oracle answered without JSON
            OracleFormatError: The response is empty or malformed
        """
        prompt = CLARIFY_PROMPT.format(
            question=question,
            options=_numbered(options),
            history=_section(answer_context),
        )
        response = await self.llm.generate(prompt, max_tokens=1024, user_id=user_id)
        data = _parse_json(response, "clarify")

        raw_questions = data.get("questions")
        if not isinstance(raw_questions, list) or not raw_questions:
            logger.error("Oracle response has no questions list")
            raise OracleFormatError("Oracle response has no questions", raw_response=response)

        questions = []
        try:
            for item in raw_questions:
                # Older prompt versions returned bare strings
                if isinstance(item, str):
                    item = {"question": item}
                questions.append(ClarifyingQuestion.model_validate(item))
        except ValidationError as e:
            logger.error(f"Oracle questions failed validation: {e.error_count()} errors")
            raise OracleFormatError(
                "Oracle returned malformed questions", raw_response=response
            ) from e

        if len(questions) > MAX_QUESTIONS:
            logger.info(f"Oracle returned {len(questions)} questions, keeping {MAX_QUESTIONS}")
            questions = questions[:MAX_QUESTIONS]

        return questions

    async def analyze(
        self,
        question: str,
        options: Sequence[str],
        answers: Optional[Sequence[ClarifyingAnswer]] = None,
        decision_context: str = "",
        user_id: Optional[str] = None,
    ) -> DecisionAnalysis:
        """Ask the oracle for option analyses and weights.

        Weight/label consistency against the options is checked by the
        lifecycle; this only enforces the response schema.

        Raises:
            OracleRefusalError: The oracle answered without JSON
            OracleFormatError: The response is empty or malformed
        """
        prompt = ANALYZE_PROMPT.format(
            question=question,
            options=_numbered(options),
            answers=_answers_section(answers),
            history=_section(decision_context),
            history_note=HISTORY_NOTE if decision_context else "",
        )
        response = await self.llm.generate(prompt, max_tokens=2048, user_id=user_id)
        data = _parse_json(response, "decide")

        try:
            return DecisionAnalysis.model_validate(data)
        except ValidationError as e:
            logger.error(f"Oracle analysis failed validation: {e.error_count()} errors")
            raise OracleFormatError(
                "Oracle returned a malformed analysis", raw_response=response
            ) from e
