"""
Centralized AI Prompt Repository
- Ensures consistency of the feedback format the analysis service returns
- Decouples prompts from business logic
"""

# --- RESUME FEEDBACK PROMPTS ---
RESUME_FEEDBACK_FORMAT = """{
    "overallScore": 0-100,
    "ATS": {
        "score": 0-100,
        "tips": [{"type": "good" | "improve", "tip": "Short tip"}]
    },
    "toneAndStyle": {
        "score": 0-100,
        "tips": [{"type": "good" | "improve", "tip": "Short title", "explanation": "Detailed explanation"}]
    },
    "content": {
        "score": 0-100,
        "tips": [{"type": "good" | "improve", "tip": "Short title", "explanation": "Detailed explanation"}]
    },
    "structure": {
        "score": 0-100,
        "tips": [{"type": "good" | "improve", "tip": "Short title", "explanation": "Detailed explanation"}]
    },
    "skills": {
        "score": 0-100,
        "tips": [{"type": "good" | "improve", "tip": "Short title", "explanation": "Detailed explanation"}]
    }
}"""

RESUME_FEEDBACK_TEMPLATE = (
    "You are an expert in ATS (Applicant Tracking System) and resume analysis. "
    "Please analyze and rate this resume and suggest how to improve it. "
    "The rating can be low if the resume is bad. "
    "Be thorough and detailed. Don't be afraid to point out any mistakes or areas for improvement. "
    "If there is a lot to improve, don't hesitate to give low scores. This is to help the user to improve their resume. "
    "If available, use the job description for the job user is applying to to give more detailed feedback. "
    "If provided, take the job description into consideration.\n"
    "The job title is: {job_title}\n"
    "The job description is: {job_description}\n"
    "Provide the feedback using the following format:\n{response_format}\n"
    "Return the analysis as a JSON object, without any other text and without the backticks. "
    "Do not include any other text or comments."
)

RESUME_DOCUMENT_TEMPLATE = "RESUME TEXT:\n{resume_text}"

# helper to build prompts
def get_prompt(template: str, **kwargs) -> str:
    return template.format(**kwargs)

def prepare_instructions(job_title: str, job_description: str) -> str:
    return get_prompt(
        RESUME_FEEDBACK_TEMPLATE,
        job_title=job_title,
        job_description=job_description,
        response_format=RESUME_FEEDBACK_FORMAT,
    )
