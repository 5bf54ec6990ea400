from setuptools import setup, find_packages

setup(
    name='ChimRem',
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'pandas>=1.5',
        'numpy>=1.24',
        'biopython>=1.80',
    ],
    extras_require={
        'test': ['pytest>=7'],
    },
    entry_points={
        'console_scripts': [
            'chimrem=ChimRem.cli:main'
        ]
    },
    description='CLI tool for removing chimeric sequences from denoised amplicon data and writing ASV tables',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    license='MIT',
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
        'Intended Audience :: Science/Research',
    ],
    python_requires='>=3.10',
)
