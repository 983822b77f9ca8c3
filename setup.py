"""
LectureQuiz — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

    # Run:
    lecture-quiz process lecture.mp4
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "lecture-quiz"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Lecture video transcription and multiple-choice question generation",
    packages=find_namespace_packages(include=["lecturequiz", "lecturequiz.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "lecture-quiz=main:main",
        ],
    },
)
