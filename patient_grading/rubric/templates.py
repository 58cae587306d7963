"""
Built-in rubric templates.

The standard OSCE rubric scores five broad competencies; the FPCC
complete-history rubric follows the Society Advisor direct observation
assessment (ME = 2, NI = 1, DNM = 0 points per item).
"""

from patient_grading.models import Rubric, RubricCategory

_FPCC_SCALE = "Scoring: ME (2pts), NI (1pt), DNM (0pt) per item"

STANDARD_OSCE_CATEGORIES: tuple[RubricCategory, ...] = (
    RubricCategory(
        name="History Taking",
        description="Gathering relevant patient information",
        max_points=10,
        criteria="Asked appropriate questions, obtained comprehensive history, followed logical sequence",
    ),
    RubricCategory(
        name="Communication Skills",
        description="Interpersonal and communication abilities",
        max_points=10,
        criteria="Clear communication, active listening, empathy, appropriate language level",
    ),
    RubricCategory(
        name="Clinical Reasoning",
        description="Diagnostic thinking and problem-solving",
        max_points=10,
        criteria="Logical differential diagnosis, appropriate follow-up questions, clinical judgment",
    ),
    RubricCategory(
        name="Professionalism",
        description="Professional behavior and ethics",
        max_points=10,
        criteria="Respectful manner, appropriate boundaries, ethical considerations",
    ),
    RubricCategory(
        name="Patient Education",
        description="Explaining and educating the patient",
        max_points=10,
        criteria="Clear explanations, checked understanding, provided appropriate guidance",
    ),
)


def _fpcc(name: str, description: str, items: list[str]) -> RubricCategory:
    """Each FPCC item is worth 2 points."""
    return RubricCategory(
        name=name,
        description=description,
        max_points=2 * len(items),
        criteria="\n".join([_FPCC_SCALE] + [f"• {item}" for item in items]),
    )


FPCC_COMPLETE_HISTORY_CATEGORIES: tuple[RubricCategory, ...] = (
    _fpcc(
        "Introduction",
        "Initial patient interaction and rapport building",
        [
            "Introduces self to patient",
            "Confirms how patient prefers to be addressed (i.e. first name, Mr/Mrs X)",
            "Asks patient's age",
            "If applicable: confirms patient's pronouns",
        ],
    ),
    _fpcc(
        "Chief Complaint",
        "Identifying the patient's primary concerns",
        [
            "Elicits a clear chief complaint",
            'Identifies other concerns by asking "what else?"',
            "Sets agenda for the visit",
        ],
    ),
    _fpcc(
        "History of Present Illness",
        "Detailed exploration of current symptoms (CLODIIERRS)",
        [
            "Assesses course, chronology (CLODIIERRS)",
            "Assesses location",
            "Assesses onset",
            "Assesses duration",
            "Assesses intensity/severity",
            "Assesses impact on lifestyle",
            "Assesses exacerbating factors",
            "Assesses relieving factors",
            "Assesses radiation",
            "Assesses associated symptoms",
            "May identify and ask PMH, FH, SH, and ROS relevant to CC and HPI",
        ],
    ),
    _fpcc(
        "Past Medical History",
        "Previous medical conditions and health maintenance",
        [
            "Identifies active medical problems",
            "Identifies former medical problems",
            "Identifies prior hospitalizations",
            "Identifies prior surgeries",
            "Identifies OB/Gyn history (if applicable): pregnancies, birth history",
            "Identifies pediatric history (if applicable): birth history, immunizations, "
            "developmental milestones",
            "Identifies relevant preventive topics (if applicable): cancer screenings, immunizations",
        ],
    ),
    _fpcc(
        "Medications",
        "Current medication use",
        [
            "Identifies all prescription medications with dose and frequency",
            "Identifies OTC and herbal medicines",
        ],
    ),
    _fpcc(
        "Allergies",
        "Drug allergies and relationship to medical history",
        [
            "Identifies all drug allergies and reactions",
            "Explores relationship between PMH and CC (Ex: have you had anything like this "
            "before? Do you think this is related to one of your chronic conditions?)",
        ],
    ),
    _fpcc(
        "Family History",
        "Hereditary and familial health patterns",
        [
            "Identifies medical conditions in first-degree relatives",
            "Explores important causes of mortality in US – heart disease, diabetes, cancer",
            "Identifies important familial risk factors related to CC/HPI (ex: Does anything "
            "like this run in your family?)",
        ],
    ),
    _fpcc(
        "Social History",
        "Lifestyle, habits, and social determinants of health",
        [
            "Quantify and detail use of alcohol",
            "Quantify and detail use of tobacco products",
            "Quantify and detail use of illicit drugs",
            "Asks about diet and exercise",
            "Elicits household composition",
            "Elicits sexual history and intimate partner violence",
            "Expanded social history which could include relationship status, housing, "
            "activities/hobbies, education, work, major stressors, sleep, travel history, "
            "religion/spirituality/culture, etc.",
            "Identifies important risk factors for the CC/HPI (ex: has anything in your daily "
            "routine changed that could be contributing to these symptoms?)",
        ],
    ),
    _fpcc(
        "Review of Systems",
        "Comprehensive systems review",
        ["Reflects on all relevant systems"],
    ),
    _fpcc(
        "Conclusion",
        "Closing the interview and summarizing findings",
        [
            "Invites questions and further comments",
            "Elicits patient's concerns or expectations about the visit",
            "Summarizes",
        ],
    ),
)


def _rubric(title: str, categories: tuple[RubricCategory, ...]) -> Rubric:
    return Rubric(
        title=title,
        categories=categories,
        total_points=sum(c.max_points for c in categories),
    )


TEMPLATES: dict[str, Rubric] = {
    "standard-osce": _rubric("Standard OSCE Rubric", STANDARD_OSCE_CATEGORIES),
    "fpcc-complete-history": _rubric(
        "FPCC Complete History", FPCC_COMPLETE_HISTORY_CATEGORIES
    ),
}


def get_template(name: str) -> Rubric:
    """
    Return a built-in rubric by name.

    Raises:
        KeyError: If there is no template with that name.
    """
    return TEMPLATES[name.strip().lower()]
