import setuptools

setuptools.setup(
    name='pipework',
    description='composable pipelines of child processes',
    long_description=open("README.md").read(),
    long_description_content_type='text/markdown',
    license='MIT',
    version='0.1.0',
    packages=['pipework'],
    python_requires='>=3.6',
    extras_require={
        'test': ['pytest', 'flake8', 'black'],
    },
)
