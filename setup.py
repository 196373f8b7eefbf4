from setuptools import setup, find_packages

package_name = 'handsign'

setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.10',
    install_requires=[
        'setuptools',
        'numpy>=1.24',
        'fastapi>=0.104.0',
        'pydantic>=2.0',
        'uvicorn>=0.24.0',
        'websockets>=13.0',
    ],
    extras_require={
        'client': [
            'opencv-python>=4.8',
            'mediapipe>=0.10.0',
        ],
        'test': [
            'pytest>=7.0',
            'httpx>=0.25',
        ],
    },
    zip_safe=True,
    description='Teach and recognize short hand-gesture sequences from landmark streams',
    license='MIT',
    entry_points={
        'console_scripts': [
            'handsign-gateway = handsign_gateway.main:main',
            'handsign-client = handsign_client.main:main',
        ],
    },
)
