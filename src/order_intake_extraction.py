"""
Order Intake – Free-text Extraction
===================================

Turns a pasted order message (KakaoTalk / SMS style free text) into one keyed
order whose keys are the fixed sheet columns. The Gemini call is the only
moving part; everything returned is normalized to strings and unknown keys
are dropped so the row mapper never sees invented columns.
"""
from __future__ import annotations

import json
from typing import Dict, List, Optional, Sequence

import google.generativeai as genai

import config
from order_intake_contract import ExtractionFailure, InvalidOrderPayload
from utils.logger import get_logger


EXTRACTION_PROMPT = """
다음 주문 메시지에서 주문 정보를 추출하세요.

반드시 아래 키만 사용하는 JSON 객체 하나로 답하세요. 값은 모두 문자열입니다.
메시지에 없는 정보는 빈 문자열("")로 두고, 추측하지 마세요.

키 목록:
{fields}

규칙:
- 결제금액은 숫자만 적습니다 (원, 쉼표 제외).
- 계좌번호는 하이픈(-)을 유지합니다.
- 연락처는 010-0000-0000 형식으로 적습니다.

주문 메시지:
\"\"\"
{text}
\"\"\"
"""


def _strip_code_fences(response_text: str) -> str:
    if response_text.startswith('```'):
        lines = response_text.split('\n')
        response_text = '\n'.join([
            line for line in lines
            if not line.strip().startswith('```') and not line.strip() == 'json'
        ])
    return response_text.strip()


class OrderTextExtractor:
    """Extracts one order from free text with Gemini"""

    def __init__(self, model=None, fields: Optional[Sequence[str]] = None):
        """
        Args:
            model: Object with ``generate_content(prompt)``; defaults to the
                   configured Gemini model.
            fields: Keys to extract, defaults to ORDER_FIXED_COLUMNS.
        """
        if model is None:
            if not config.GOOGLE_API_KEY:
                raise ExtractionFailure("GOOGLE_API_KEY is not set")
            genai.configure(api_key=config.GOOGLE_API_KEY)
            model = genai.GenerativeModel(config.GEMINI_MODEL)
        self.model = model
        self.fields: List[str] = list(fields or config.ORDER_FIXED_COLUMNS)

    def build_prompt(self, text: str) -> str:
        return EXTRACTION_PROMPT.format(
            fields="\n".join(f"- {field}" for field in self.fields),
            text=text.strip(),
        )

    def extract(self, text: str) -> Dict[str, str]:
        """
        Returns:
            Dict with every configured field, missing ones as ''.

        Raises:
            InvalidOrderPayload: Empty input.
            ExtractionFailure: Model call failed or returned unusable JSON.
        """
        if not text or not text.strip():
            raise InvalidOrderPayload("주문 내용을 입력해주세요.")

        logger = get_logger()
        try:
            response = self.model.generate_content(self.build_prompt(text))
            response_text = _strip_code_fences(response.text.strip())
        except Exception as e:
            logger.error(f"Gemini call failed: {e}", component="Extraction")
            raise ExtractionFailure(f"주문 분석에 실패했습니다: {e}") from e

        try:
            extracted = json.loads(response_text)
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable response: {response_text[:500]}", component="Extraction")
            raise ExtractionFailure("주문 분석 결과를 해석할 수 없습니다.") from e

        # Some responses wrap the object in a one-element list
        if isinstance(extracted, list) and extracted:
            extracted = extracted[0]
        if not isinstance(extracted, dict):
            raise ExtractionFailure("주문 분석 결과가 올바른 형식이 아닙니다.")

        order = {}
        for field in self.fields:
            value = extracted.get(field)
            order[field] = '' if value is None else str(value).strip()

        logger.info(
            f"Extracted {sum(1 for v in order.values() if v)} of {len(self.fields)} fields",
            component="Extraction",
        )
        return order

    def to_positional(self, order: Dict[str, str]) -> List[str]:
        """Same order as a positional record (fixed column order)."""
        return [order.get(field, '') for field in self.fields]
