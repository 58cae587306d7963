"""
Prompt builder for judge grading.

Constructs the prompts that ask a judge to:
- Evaluate only the student's side of a simulated patient interview
- Score every rubric category with transcript evidence
- Respond with a fixed JSON structure
"""

from patient_grading.models import GradingInput, Rubric, TranscriptMessage


class PromptBuilder:
    """
    Builds grading prompts for simulated patient interviews.

    The same prompts go to every judge so that their scores are comparable.
    """

    SYSTEM_PROMPT = """You are an expert medical education evaluator. Your task is to grade a student's performance in a simulated patient interview based on a provided rubric.

## Your Role
- You are evaluating a medical student's interview with a simulated patient (virtual patient)
- The "user" messages are from the student conducting the interview
- The "assistant" messages are from the simulated patient responding

## Grading Guidelines
1. Evaluate ONLY the student's performance (user messages), not the patient's responses
2. For each rubric category, assess how well the student met the criteria
3. Provide specific evidence from the transcript to support your scores
4. Be fair but rigorous - students should demonstrate competency to earn full points
5. Consider both what was asked AND how it was asked (communication style, empathy, etc.)

## Scoring Scale
- For each category, score from 0 to the maximum points allowed
- 0 = Did not address this area at all
- 25% of max = Minimal attempt, significant gaps
- 50% of max = Partial completion, some important elements missing
- 75% of max = Good performance with minor gaps
- 100% of max = Excellent, comprehensive coverage

## Response Format
You must respond with valid JSON matching the exact structure requested. Do not include any text before or after the JSON."""

    @staticmethod
    def build_grading_prompt(grading_input: GradingInput) -> str:
        """
        Build the user prompt for grading.

        Args:
            grading_input: Transcript, rubric and optional patient context.

        Returns:
            The formatted user prompt.
        """
        rubric = grading_input.rubric
        context_text = ""
        if grading_input.patient_context is not None:
            ctx = grading_input.patient_context
            context_text = (
                "## Patient Context\n"
                f"- Name: {ctx.name}\n"
                f"- Age: {ctx.age}\n"
                f"- Chief Complaint: {ctx.chief_complaint}\n\n"
            )

        rubric_text = PromptBuilder._format_rubric(rubric)
        transcript_text = PromptBuilder._format_transcript(grading_input.transcript)

        return f"""{context_text}## Grading Rubric (Total: {rubric.total_points} points)

{rubric_text}

## Chat Transcript to Evaluate

{transcript_text}

## Your Task

Grade the student's performance in the above transcript according to each rubric category. For each category:
1. Assign a score from 0 to the maximum points
2. Provide specific reasoning with evidence from the transcript

Respond with a JSON object in this exact format:
{{
  "categoryScores": [
    {{
      "category": "Category Name",
      "score": <number>,
      "maxPoints": <number>,
      "reasoning": "Specific explanation with evidence from transcript"
    }}
  ],
  "totalScore": <sum of all category scores>,
  "overallFeedback": "A 2-3 sentence summary of the student's overall performance"
}}"""

    @staticmethod
    def _format_rubric(rubric: Rubric) -> str:
        """Format the rubric categories for the prompt."""
        sections = [
            f"### Category {i}: {category.name} ({category.max_points} points)\n"
            f"**Description:** {category.description}\n"
            f"**Criteria:** {category.criteria}"
            for i, category in enumerate(rubric.categories, start=1)
        ]
        return "\n\n".join(sections)

    @staticmethod
    def _format_transcript(transcript: tuple[TranscriptMessage, ...]) -> str:
        """Label each turn as STUDENT or PATIENT."""
        return "\n\n".join(
            f"[{'STUDENT' if message.role == 'user' else 'PATIENT'}]: {message.content}"
            for message in transcript
        )

    @staticmethod
    def get_system_prompt() -> str:
        """Get the system prompt for judge grading."""
        return PromptBuilder.SYSTEM_PROMPT

    @staticmethod
    def build_messages(grading_input: GradingInput) -> tuple[str, str]:
        """Return the (system, user) prompt pair for one judge call."""
        return PromptBuilder.get_system_prompt(), PromptBuilder.build_grading_prompt(grading_input)
