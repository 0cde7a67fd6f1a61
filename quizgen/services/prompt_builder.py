from langchain_core.prompts import PromptTemplate

from quizgen.schemas import ExtractedText, QuizPrompt

OPTION_COUNT = 4

# Quiz generation template
QUIZ_TEMPLATE = """
You are an expert MCQ maker. Generate exactly {number} diverse multiple-choice questions from the following document text.
Guidelines:
1. Each question must have exactly {option_count} options: 1 correct answer and {wrong_count} plausible but incorrect options
2. Questions should test different aspects of the content (concepts, details, applications)
3. Questions must be specific to the content provided; avoid repetitive question patterns
4. Use clear, concise language
5. You MUST generate exactly {number} questions, no more and no fewer

Return ONLY valid JSON, with no explanation or markdown, in this exact format:
{{
    "questions": [
        {{
            "question": "Specific question about the content?",
            "options": ["option1", "option2", "option3", "option4"],
            "correctIndex": 0
        }}
    ]
}}
"correctIndex" is the zero-based position of the correct option in "options".

Document text: {text}
"""

QUIZ_PROMPT = PromptTemplate(
    input_variables=["text", "number", "option_count", "wrong_count"],
    template=QUIZ_TEMPLATE,
)


class PromptBuilder:
    def __init__(self, max_chars: int = 4000, question_count: int = 5):
        self.max_chars = max_chars
        self.question_count = question_count

    def truncate(self, text: str) -> str:
        """Raw prefix cut to the configured character limit"""
        return text[: self.max_chars]

    def build(self, extracted: ExtractedText) -> QuizPrompt:
        excerpt = self.truncate(extracted.text)
        text = QUIZ_PROMPT.format(
            text=excerpt,
            number=self.question_count,
            option_count=OPTION_COUNT,
            wrong_count=OPTION_COUNT - 1,
        )
        return QuizPrompt(text=text, excerpt=excerpt)
