"""
AI-assisted categorization, insights and chat on top of GeminiService.

Features:
    - Prompt templates embedding transaction descriptions and amounts
    - Best-effort extraction of a JSON object from free-text model output
    - Keyword-based category fallback and templated summaries when the
      model is unavailable or its output cannot be parsed
"""

import json
import re
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError as SchemaError

from exceptions import AIServiceError
from models import User
from schemas import AIAnalysisResponse, CategorizedTransaction
from services.cache import INSIGHTS, ResponseCache, response_cache
from services.circuit_breaker import CircuitOpenError
from services.gemini_service import GeminiService
from services.observability import logger, metrics, timed
from services.transaction_service import UNCATEGORIZED, TransactionService

CATEGORIES = [
    "Food", "Travel", "Groceries", "Shopping", "Entertainment",
    "Utilities", "Healthcare", "Education", "Others",
]

CHAT_ERROR_MESSAGE = "I'm having trouble processing your request. Please try asking in a different way."
CHAT_UNAVAILABLE_MESSAGE = (
    "AI service is temporarily unavailable. We're working to restore it. "
    "Please try again in a few moments."
)


def format_inr(amount: float) -> str:
    return f"₹{amount:.2f}"


class AIService:
    """Prompt building, response parsing and fallbacks for the AI endpoints."""

    # Checked in order; first match wins. Plain substring semantics.
    KEYWORD_RULES = {
        r"uber|ola|taxi|bus|train": "Travel",
        r"zomato|swiggy|restaurant|food|cafe|pizza": "Food",
        r"amazon|flipkart|myntra|shopping": "Shopping",
        r"bazaar|grocery|supermarket|vegetables|dmart": "Groceries",
        r"netflix|spotify|prime|movie|game": "Entertainment",
        r"electricity|water|gas|bill|recharge": "Utilities",
        r"hospital|doctor|medicine|pharmacy|clinic": "Healthcare",
        r"school|course|book|tuition|education": "Education",
    }

    INSIGHT_MONTHS = 3

    def __init__(
        self,
        gemini_service: GeminiService,
        transaction_service: TransactionService,
        cache: Optional[ResponseCache] = None,
    ):
        self.gemini = gemini_service
        self.transactions = transaction_service
        self.cache = cache if cache is not None else response_cache

    # -------------------------------------------------------------------------
    # Categorization
    # -------------------------------------------------------------------------

    @timed("ai.analyze")
    async def analyze_transactions(self, transactions: Sequence) -> AIAnalysisResponse:
        """
        Categorize transactions and summarise spending.

        Args:
            transactions: objects with `description` and `amount` attributes.
        """
        if not transactions:
            return AIAnalysisResponse(categorized_transactions=[], summary="No transactions to analyze.")

        transaction_text = "\n".join(
            f"{t.description}: {format_inr(t.amount)}" for t in transactions
        )
        prompt = (
            "Analyze and categorize these financial transactions. "
            f"For each transaction, assign ONE category from: {', '.join(CATEGORIES)}.\n\n"
            f"Transactions:\n{transaction_text}\n\n"
            "Provide response in this exact JSON format:\n"
            "{\n"
            '  "categorizedTransactions": [\n'
            '    {"transaction": "description amount", "category": "Category"}\n'
            "  ],\n"
            '  "summary": "Brief 2-sentence spending summary"\n'
            "}"
        )

        try:
            content = await self.gemini.generate_content(prompt)
        except AIServiceError as e:
            logger.warning("AI analysis failed, using fallback", error=e.message)
            metrics.increment("ai.fallback", tags={"feature": "analyze"})
            return self.create_fallback_analysis(transactions)

        return self.parse_ai_response(content, transactions)

    def parse_ai_response(self, content: str, transactions: Sequence) -> AIAnalysisResponse:
        """Parse the JSON object embedded in `content`, or fall back to keyword rules."""
        payload = self.extract_json(content)
        if payload is not None:
            try:
                return AIAnalysisResponse.model_validate(payload)
            except SchemaError:
                pass

        logger.warning("Failed to parse AI JSON response, using fallback")
        metrics.increment("ai.fallback", tags={"feature": "analyze_parse"})
        return self.create_fallback_analysis(transactions)

    @staticmethod
    def extract_json(content: Optional[str]) -> Optional[dict]:
        """Decode the text between the first '{' and the last '}' as a JSON object."""
        if not content:
            return None
        start = content.find("{")
        end = content.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            payload = json.loads(content[start:end])
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None

    def create_fallback_analysis(self, transactions: Sequence) -> AIAnalysisResponse:
        categorized = []
        category_totals: Dict[str, float] = defaultdict(float)

        for t in transactions:
            category = self.predict_category(t.description)
            categorized.append(
                CategorizedTransaction(transaction=f"{t.description} {format_inr(t.amount)}", category=category)
            )
            category_totals[category] += t.amount

        total = sum(t.amount for t in transactions)
        top_category = max(category_totals, key=category_totals.get) if category_totals else "Unknown"

        summary = (
            f"Total spending: {format_inr(total)} across {len(transactions)} transactions. "
            f"Your highest expense category is {top_category} "
            f"({format_inr(category_totals.get(top_category, 0.0))})."
        )
        return AIAnalysisResponse(categorized_transactions=categorized, summary=summary)

    @classmethod
    def predict_category(cls, description: Optional[str]) -> str:
        lower = (description or "").lower()
        for pattern, category in cls.KEYWORD_RULES.items():
            if re.search(pattern, lower):
                return category
        return "Others"

    # -------------------------------------------------------------------------
    # Insights
    # -------------------------------------------------------------------------

    @staticmethod
    def category_totals(transactions: Sequence) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for t in transactions:
            totals[t.category or UNCATEGORIZED] += t.amount
        return dict(totals)

    @timed("ai.insights")
    async def generate_insights(self, user: User) -> str:
        cached = self.cache.get(INSIGHTS, user.id)
        if cached is not None:
            return cached

        recent = self.transactions.get_recent_transactions(user, self.INSIGHT_MONTHS)
        if not recent:
            return "No transaction data available for insights."

        total = sum(t.amount for t in recent)
        totals = self.category_totals(recent)
        breakdown = ", ".join(
            f"{name}: {format_inr(amount)}"
            for name, amount in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:5]
        )

        prompt = (
            f"You are a financial advisor. Analyze this spending data from the last {self.INSIGHT_MONTHS} months:\n\n"
            f"Total Spending: {format_inr(total)}\n"
            f"Category Breakdown: {breakdown}\n\n"
            "Provide:\n"
            "1. Key spending insights\n"
            "2. Prediction for next month\n"
            "3. One actionable saving tip\n\n"
            "Keep response to 3-4 sentences, professional and helpful."
        )

        try:
            insight = await self.gemini.generate_content(prompt)
        except AIServiceError as e:
            logger.warning("Insight generation failed, using fallback", error=e.message)
            metrics.increment("ai.fallback", tags={"feature": "insights"})
            return self.generate_fallback_insight(total, totals)

        self.cache.set(INSIGHTS, user.id, insight)
        return insight

    def generate_fallback_insight(self, total: float, totals: Dict[str, float]) -> str:
        top_category = max(totals, key=totals.get) if totals else "Unknown"
        top_amount = totals.get(top_category, 0.0)
        percentage = (top_amount / total * 100) if total else 0.0

        return (
            f"Over the last {self.INSIGHT_MONTHS} months, you've spent {format_inr(total)} in total. "
            f"Your highest expense category is {top_category}, accounting for {percentage:.1f}% of your spending. "
            f"Consider setting a monthly budget of {format_inr(top_amount * 0.8)} for {top_category} "
            "to better control expenses."
        )

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    def build_transaction_context(self, transactions: List) -> str:
        if not transactions:
            return "No transactions available."

        total = sum(t.amount for t in transactions)
        lines = [
            f"Total Transactions: {len(transactions)}",
            f"Total Spending: {format_inr(total)}",
            "Category Breakdown:",
        ]
        for name, amount in self.category_totals(transactions).items():
            lines.append(f"  - {name}: {format_inr(amount)}")
        return "\n".join(lines) + "\n"

    @timed("ai.chat")
    async def chat_with_ai(self, query: str, user: User) -> str:
        context = self.build_transaction_context(self.transactions.get_all_transactions(user))
        prompt = (
            "You are a helpful personal finance assistant. Answer the user's question "
            "based on their transaction data. Be concise and friendly.\n\n"
            f"Transaction Summary:\n{context}\n"
            f"User Question: {query}\n\n"
            "Provide a clear, helpful answer in 2-3 sentences."
        )

        try:
            return await self.gemini.generate_content(prompt)
        except CircuitOpenError:
            metrics.increment("ai.fallback", tags={"feature": "chat"})
            return CHAT_UNAVAILABLE_MESSAGE
        except AIServiceError as e:
            logger.error("Chat failed", user=user.id, error=e.message)
            metrics.increment("ai.fallback", tags={"feature": "chat"})
            return CHAT_ERROR_MESSAGE
