"""
Debug utilities: intent analysis, batch checks, scenario runs, reports.

Usage:
    python debugger.py              # run the built-in scenarios
"""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.table import Table

from bot import ChatbotConfig, GraduateSupportBot
from config import configure_logging

DEFAULT_THRESHOLDS = [0.3, 0.4, 0.5, 0.6, 0.7]

BENCHMARK_QUERIES = [
    "How do I submit a survey?",
    "Find me a job",
    "Update my profile",
    "Career services",
    "Technical support",
]

SCENARIOS = [
    ("Survey Submission", ["How do I submit a survey?", "Can I edit it later?", "Thanks!"]),
    ("Job Search", ["I need to find a job", "Are there remote positions?", "How do I apply?"]),
    ("Profile Update", ["Update my profile", "Change my password", "Privacy settings"]),
    ("Mixed Topics", ["Hello", "Jobs in Manila", "How about training programs?", "Thanks for your help"]),
]


def preview(text: str, length: int = 100) -> str:
    return text if len(text) <= length else text[:length] + "..."


class ChatbotDebugger:
    def __init__(self, bot: GraduateSupportBot = None, console: Console = None):
        self.bot = bot or GraduateSupportBot(ChatbotConfig(debug_mode=True, auto_cleanup=False))
        self.console = console or Console()

    # =========================================================================
    # INTENTS
    # =========================================================================

    def test_intent(self, message: str) -> Dict[str, Any]:
        """Match a message and break the result down"""
        result = self.bot.test_intent(message)
        return {
            "input": message,
            "result": result,
            "analysis": {
                "has_match": result is not None,
                "confidence": result.confidence if result else 0.0,
                "intent_name": result.intent.name if result else None,
                "category": result.intent.category.value if result else None,
                "matched_keywords": list(result.matched_keywords) if result else [],
                "entities": result.entities.to_dict() if result else {},
            },
        }

    def test_batch(self, queries: Sequence[str]) -> List[Dict[str, Any]]:
        rows = []
        for query in queries:
            result = self.bot.test_intent(query)
            rows.append({
                "query": query,
                "intent": result.intent.name if result else None,
                "confidence": result.confidence if result else 0.0,
            })
        return rows

    def test_confidence_threshold(self, message: str, thresholds: Sequence[float] = None) -> Dict[str, Any]:
        """Which minimum-confidence settings would accept this message"""
        result = self.bot.test_intent(message)
        confidence = result.confidence if result else 0.0
        return {
            "message": message,
            "detected_confidence": confidence,
            "intent_name": result.intent.name if result else "none",
            "would_match": [
                {"threshold": t, "passes": confidence >= t}
                for t in (thresholds or DEFAULT_THRESHOLDS)
            ],
        }

    def benchmark_intent_detection(self, iterations: int = 1000) -> Dict[str, float]:
        start = time.perf_counter()
        for i in range(iterations):
            self.bot.test_intent(BENCHMARK_QUERIES[i % len(BENCHMARK_QUERIES)])
        total = time.perf_counter() - start

        average = total / iterations if iterations else 0.0
        return {
            "iterations": iterations,
            "total_time": total,
            "average_time": average,
            "queries_per_second": 1 / average if average else 0.0,
        }

    # =========================================================================
    # KNOWLEDGE
    # =========================================================================

    def search_knowledge(self, query: str) -> Dict[str, Any]:
        results = self.bot.search_knowledge(query)
        return {
            "query": query,
            "result_count": len(results),
            "results": [
                {
                    "id": r.id,
                    "category": r.category.value,
                    "question": r.question,
                    "answer_preview": preview(r.answer),
                    "tags": list(r.tags),
                }
                for r in results
            ],
        }

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    def simulate_conversation(self, messages: Sequence[str], session_id: str = None) -> Dict[str, Any]:
        """Feed messages through the full pipeline in a throwaway session"""
        session_id = session_id or f"debug_{uuid.uuid4().hex[:8]}"
        turns = []
        for message in messages:
            response = self.bot.process_message(message, session_id)
            turns.append({
                "user": message,
                "assistant": response.content,
                "intent": response.intent,
                "confidence": response.confidence,
            })

        return {
            "session_id": session_id,
            "messages": turns,
            "summary": self.bot.get_summary(session_id),
        }

    def run_scenarios(self) -> None:
        for name, messages in SCENARIOS:
            result = self.simulate_conversation(messages)

            table = Table(title=f"Scenario: {name} ({result['session_id']})")
            table.add_column("User")
            table.add_column("Intent")
            table.add_column("Confidence", justify="right")
            for turn in result["messages"]:
                table.add_row(turn["user"][:30], turn["intent"], f"{turn['confidence']:.2f}")

            self.console.print(table)
            self.console.print(f"Topics: {', '.join(result['summary']['topics'])}\n")

    def print_conversation_flow(self, session_id: str) -> None:
        conversation = self.bot.export_conversation(session_id)

        self.console.rule("Conversation Flow")
        self.console.print(f"Session ID: {session_id}")
        self.console.print(f"Message Count: {len(conversation['messages'])}\n")

        for i, message in enumerate(conversation["messages"], 1):
            self.console.print(f"[bold]{i}. {message['role'].upper()}[/bold]")
            self.console.print(f"   Content: {preview(message['content'])}", markup=False)
            self.console.print(f"   Timestamp: {message['timestamp']}")
            metadata = message["metadata"]
            if metadata:
                self.console.print(f"   Intent: {metadata['intent']}")
                self.console.print(f"   Confidence: {metadata['confidence']}")
                if metadata.get("entities"):
                    self.console.print(f"   Entities: {metadata['entities']}", markup=False)

        self.console.print(f"\nSummary: {conversation['summary']}", markup=False)

    def generate_report(self, session_id: str) -> str:
        """Markdown report of one session"""
        conversation = self.bot.export_conversation(session_id)
        analytics = self.bot.get_analytics(session_id)
        summary = conversation["summary"]
        indicators = analytics["satisfaction_indicators"]

        lines = [
            "# Chatbot Debug Report",
            "",
            f"**Session ID:** {session_id}",
            f"**Generated:** {datetime.now():%Y-%m-%d %H:%M:%S}",
            "",
            "## Summary",
            f"- Total Messages: {summary['message_count']}",
            f"- User Messages: {summary['user_message_count']}",
            f"- Assistant Messages: {summary['assistant_message_count']}",
            f"- Topics Covered: {', '.join(summary['topics'])}",
            f"- Duration: {round(summary['duration'])}s",
            "",
            "## Analytics",
            f"- Frequent Topics: {', '.join(analytics['frequent_topics'])}",
            f"- Avg Response Time: {analytics['average_response_time']:.2f}s",
            f"- Thanks Count: {indicators['thanks_count']}",
            f"- Repeat Questions: {indicators['repeat_questions']}",
            f"- Escalations: {indicators['escalations']}",
            "",
            "## Conversation History",
        ]

        for i, message in enumerate(conversation["messages"], 1):
            lines.append("")
            lines.append(f"### Message {i} - {message['role'].upper()}")
            lines.append(f"**Time:** {datetime.fromisoformat(message['timestamp']):%H:%M:%S}")
            lines.append(f"**Content:** {message['content']}")
            metadata = message["metadata"]
            if metadata:
                confidence = (metadata["confidence"] or 0) * 100
                lines.append(f"**Intent:** {metadata['intent']} ({confidence:.1f}%)")

        return "\n".join(lines) + "\n"


if __name__ == "__main__":
    configure_logging()

    debugger = ChatbotDebugger()
    debugger.run_scenarios()

    stats = debugger.benchmark_intent_detection()
    debugger.console.print(
        f"\n{stats['iterations']} detections in {stats['total_time']:.3f}s "
        f"({stats['queries_per_second']:.0f} q/s)"
    )
