# app.py
from flask import jsonify

from creditbank import create_app
from creditbank.program_structure import get_program_structure

app = create_app()

app.config['PROPAGATE_EXCEPTIONS'] = True


@app.route('/', methods=['GET'])
def home():
    return jsonify({'success': True, 'data': {'service': 'creditbank', 'status': 'ok'}})


@app.route('/health', methods=['GET'])
def health():
    store = get_program_structure()
    return jsonify({
        'success': True,
        'data': {'status': 'ok', 'program_structure_source': store.source},
    })


if __name__ == '__main__':
    app.run(debug=True)
