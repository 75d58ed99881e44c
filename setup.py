#!/usr/bin/env python3
"""
mobilear Setup Script
"""

from setuptools import setup, find_packages

setup(
    name='mobilear',
    version='1.0.0',
    description='EKF-based AR Pose Tracking and HDR Environment Reconstruction',
    author='FurSys AI Team',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.8',
    install_requires=[
        'numpy>=1.20.0',
        'scipy>=1.7.0',
        'opencv-python>=4.5.0',
        'filterpy>=1.4.5',
        'pyyaml>=5.4.0',
        'pandas>=1.3.0',
    ],
    extras_require={
        'dev': [
            'pytest>=6.0.0',
            'pytest-cov>=2.0.0',
        ],
    },
)
